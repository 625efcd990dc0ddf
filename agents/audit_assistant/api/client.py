"""
Audit API Client

Low-level async HTTP client for the remote audit-log service, built on
aiohttp. Handles authentication, query formatting, timeouts and the retry
policy; every unsuccessful call surfaces as a classified ``AuditApiError``.

Endpoints:
- GET /rest/orgs/{org_id}/audit_logs/search
- GET /rest/groups/{group_id}/audit_logs/search
- GET /rest/orgs/{org_id}/users/{user_id}
- GET /api/v1/org/{org_id}/members
"""

import asyncio
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiohttp

from shared.config.logging_config import get_component_logger
from shared.config.settings import ApiConfig
from shared.utils.metrics import get_metrics_collector
from shared.utils.retry import RetryConfig, RetryManager
from shared.utils.time_utils import ensure_aware

from .errors import AuditApiError, error_from_status, network_error
from .pagination import fetch_all_pages


def _format_timestamp(value: Any) -> str:
    if isinstance(value, datetime):
        return ensure_aware(value).isoformat().replace('+00:00', 'Z')
    return str(value)


class AuditApiClient:
    """
    Async client for the audit-log REST API.

    The HTTP session is created lazily and must be released with ``close()``
    (or by using the client as an async context manager).
    """

    def __init__(
        self,
        api_key: str,
        config: Optional[ApiConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
        logger=None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        if not api_key:
            raise ValueError('Audit API key is required')

        self.api_key = api_key
        self.config = config or ApiConfig()
        self.logger = logger or get_component_logger("api.client")
        self.metrics = get_metrics_collector()

        self._http_session = session
        self._owns_session = session is None

        self.retry_manager = RetryManager(
            RetryConfig(
                max_retries=self.config.max_retries,
                base_delay=self.config.retry_delay_seconds,
                max_delay=self.config.max_retry_delay_seconds
            ),
            logger=self.logger,
            sleep=sleep
        )

        self.logger.info(
            f"Initialized audit API client with base URL: {self.config.base_url}",
            extra={"api_version": self.config.api_version}
        )

    async def __aenter__(self) -> "AuditApiClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._http_session and self._owns_session:
            await self._http_session.close()
        self._http_session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._http_session is None or self._http_session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)
            self._http_session = aiohttp.ClientSession(
                base_url=self.config.base_url,
                timeout=timeout,
                headers={
                    'Content-Type': 'application/vnd.api+json',
                    'Authorization': f'token {self.api_key}'
                }
            )
            self._owns_session = True
        return self._http_session

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Send a request under the retry policy and return the decoded JSON body."""
        return await self.retry_manager.execute_with_retry(self._request_once, method, path, params)

    async def _request_once(self, method: str, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        query = dict(params or {})
        headers = {}

        # REST endpoints take the version as a query parameter, v1 as a header
        if path.startswith('/rest/'):
            query['version'] = self.config.api_version
        else:
            headers['snyk-version'] = self.config.api_version

        self.metrics.counter("audit_api_requests_total").increment()
        self.logger.debug(f"API Request: {method} {path}", extra={"params": query})

        session = self._get_session()
        try:
            async with session.request(method, path, params=query, headers=headers) as response:
                if response.status >= 400:
                    body = await response.text()
                    self.metrics.counter("audit_api_errors_total").increment()
                    self.logger.error(
                        f"API Error: {response.status} {response.reason}",
                        extra={"path": path, "status": response.status}
                    )
                    raise error_from_status(
                        response.status,
                        f"{method} {path} failed with status {response.status}",
                        details={'body': body[:1000]}
                    )
                return await response.json(content_type=None)
        except asyncio.TimeoutError as e:
            self.metrics.counter("audit_api_errors_total").increment()
            raise network_error(f"{method} {path} timed out", details={'path': path}) from e
        except aiohttp.ClientError as e:
            self.metrics.counter("audit_api_errors_total").increment()
            raise network_error(f"{method} {path} failed: {e}", details={'path': path}) from e

    # ------------------------------------------------------------------
    # Audit log search
    # ------------------------------------------------------------------

    def format_audit_params(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Translate internal search parameters into REST query parameters."""
        query: Dict[str, Any] = {}

        if params.get('from_date'):
            query['from'] = _format_timestamp(params['from_date'])
        if params.get('to_date'):
            query['to'] = _format_timestamp(params['to_date'])
        if params.get('user_id'):
            query['user_id'] = params['user_id']
        if params.get('project_id'):
            query['project_id'] = params['project_id']

        events = params.get('events')
        if events:
            query['events'] = ','.join(events) if isinstance(events, (list, tuple)) else events

        # The cursor read from links.next goes back out as next_page
        if params.get('starting_after'):
            query['next_page'] = params['starting_after']

        query['limit'] = params.get('limit') or self.config.page_limit
        query['order'] = 'DESC'
        return query

    async def search_org_audit_logs(self, org_id: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Fetch one page of organization audit logs."""
        if not org_id:
            raise ValueError('Organization ID is required')
        return await self._request(
            'GET', f'/rest/orgs/{org_id}/audit_logs/search', self.format_audit_params(params or {})
        )

    async def search_group_audit_logs(self, group_id: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Fetch one page of group audit logs."""
        if not group_id:
            raise ValueError('Group ID is required')
        return await self._request(
            'GET', f'/rest/groups/{group_id}/audit_logs/search', self.format_audit_params(params or {})
        )

    async def get_all_org_audit_logs(self, org_id: str, **params: Any):
        """All pages of an organization search, normalized."""
        return await fetch_all_pages(
            self.search_org_audit_logs, org_id, params,
            max_pages=self.config.max_pages, logger=self.logger.child("pagination")
        )

    async def get_all_group_audit_logs(self, group_id: str, **params: Any):
        """All pages of a group search, normalized."""
        return await fetch_all_pages(
            self.search_group_audit_logs, group_id, params,
            max_pages=self.config.max_pages, logger=self.logger.child("pagination")
        )

    # ------------------------------------------------------------------
    # User directory
    # ------------------------------------------------------------------

    async def get_user(self, org_id: str, user_id: str) -> Dict[str, Any]:
        """
        Fetch one user's attributes.

        Returns a flat dict with ``id``, ``name``, ``username``, ``email``.
        """
        if not user_id:
            raise ValueError('User ID is required')
        body = await self._request('GET', f'/rest/orgs/{org_id}/users/{user_id}')

        data = body.get('data', body) if isinstance(body, dict) else {}
        attributes = data.get('attributes', data) if isinstance(data, dict) else {}
        return {
            'id': data.get('id', user_id) if isinstance(data, dict) else user_id,
            'name': attributes.get('name'),
            'username': attributes.get('username'),
            'email': attributes.get('email')
        }

    async def list_org_users(self, org_id: str) -> List[Dict[str, Any]]:
        """
        List organization members.

        Raises:
            AuditApiError: classified failure, so callers can report why the
                roster is unavailable
        """
        if not org_id:
            raise ValueError('Organization ID is required')
        try:
            body = await self._request('GET', f'/api/v1/org/{org_id}/members')
        except AuditApiError as e:
            self.logger.error(
                f"Error fetching organization users: {e}",
                extra={"org_id": org_id, "error_type": e.description}
            )
            raise

        if not isinstance(body, list):
            return []

        return [
            {
                'id': member.get('id'),
                'name': member.get('name'),
                'username': member.get('username'),
                'email': member.get('email'),
                'role': member.get('role')
            }
            for member in body
            if isinstance(member, dict) and member.get('id')
        ]
