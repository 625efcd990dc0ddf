"""
Cursor pagination over the audit-log search endpoint.

``fetch_all_pages`` walks a cursor-paginated collection into one flat list
of normalized ``AuditEvent`` records. Pages may carry items either as
``{"data": [...]}`` or ``{"data": {"items": [...]}}``, and each item may be
wrapped in an ``attributes`` envelope or be flat.

Failure policy: an error from the search operation (after the client's own
retries) fails the whole call. Items accumulated from earlier pages are
discarded rather than returned as a partial result.
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import parse_qs, urlsplit

from shared.config.logging_config import get_component_logger
from shared.schemas.audit_models import AuditEvent
from shared.utils.metrics import get_metrics_collector


MAX_PAGES = 100
CURSOR_PARAM = 'starting_after'

SearchOperation = Callable[[str, Dict[str, Any]], Awaitable[Dict[str, Any]]]

_EVENT_FIELDS = {
    'created': 'created_at',
    'event': 'event_type',
    'user_id': 'user_id',
    'org_id': 'org_id',
    'project_id': 'project_id',
    'content': 'content'
}


def extract_cursor(next_link: Optional[str]) -> Optional[str]:
    """Pull the ``starting_after`` cursor out of a (possibly relative) next link."""
    if not next_link:
        return None
    values = parse_qs(urlsplit(next_link).query).get(CURSOR_PARAM)
    return values[0] if values and values[0] else None


def page_items(page: Any) -> List[Dict[str, Any]]:
    """Raw items of one page, for either supported page shape."""
    if not isinstance(page, dict):
        return []
    data = page.get('data')
    if isinstance(data, list):
        return data
    if isinstance(data, dict) and isinstance(data.get('items'), list):
        return data['items']
    return []


def next_link(page: Any) -> Optional[str]:
    if not isinstance(page, dict):
        return None
    links = page.get('links') or {}
    return links.get('next') if isinstance(links, dict) else None


def normalize_item(item: Dict[str, Any]) -> Optional[AuditEvent]:
    """
    Map one raw item to an ``AuditEvent``.

    Returns None for items without an event type.
    """
    source = item.get('attributes') if isinstance(item.get('attributes'), dict) else item

    fields = {}
    for raw_name, field_name in _EVENT_FIELDS.items():
        value = source.get(raw_name)
        if value is None:
            continue
        if field_name == 'content':
            if isinstance(value, dict):
                fields[field_name] = value
        elif field_name == 'created_at':
            fields[field_name] = value
        else:
            fields[field_name] = str(value)

    if not fields.get('event_type'):
        return None

    return AuditEvent(**fields)


async def fetch_all_pages(
    search: SearchOperation,
    resource_id: str,
    params: Optional[Dict[str, Any]] = None,
    max_pages: int = MAX_PAGES,
    logger=None
) -> List[AuditEvent]:
    """
    Fetch every page of a search and return the normalized events.

    Args:
        search: Async ``search(resource_id, params)`` returning one raw page
        resource_id: Organization or group id passed through to ``search``
        params: Query parameters; the cursor is added as ``starting_after``
        max_pages: Hard cap on the number of ``search`` calls

    Raises:
        Whatever ``search`` raises; no partial result is returned.
    """
    logger = logger or get_component_logger("api.pagination")
    metrics = get_metrics_collector()
    base_params = dict(params or {})

    raw_items: List[Dict[str, Any]] = []
    cursor: Optional[str] = None
    page_count = 0

    while True:
        page_params = dict(base_params)
        if cursor:
            page_params[CURSOR_PARAM] = cursor

        page = await search(resource_id, page_params)
        page_count += 1
        metrics.counter("audit_api_pages_fetched").increment()

        items = page_items(page)
        raw_items.extend(items)
        logger.debug(f"Fetched page {page_count} with {len(items)} items", extra={"resource_id": resource_id})

        cursor = extract_cursor(next_link(page))
        if not cursor:
            break

        if page_count >= max_pages:
            logger.warning(f"Reached maximum page limit ({max_pages}), stopping pagination")
            break

    events = []
    for item in raw_items:
        if not isinstance(item, dict):
            continue
        event = normalize_item(item)
        if event is None:
            logger.warning("Skipping audit item without event type")
            continue
        events.append(event)

    logger.info(
        f"Completed fetching all pages. Total items: {len(events)}",
        extra={"resource_id": resource_id, "pages": page_count}
    )
    return events
