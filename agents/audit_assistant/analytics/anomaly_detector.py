"""
Anomaly Detector

Three independent, non-exclusive rules over one event window:

1. Volume: an actor performed the same security-critical action more than
   ``volume_threshold`` times (medium severity).
2. After hours: a security-critical action happened outside the business
   hours window, evaluated in the configured timezone (medium severity).
3. Service account: an actor that looks like a service account performed
   a security-critical action that is not routine CI activity (high severity).
"""

from collections import OrderedDict
from typing import Dict, List, Optional, Tuple

from shared.config.logging_config import get_component_logger
from shared.config.settings import AuditConfig
from shared.schemas.audit_models import AnomalyRecord, AnomalyType, AuditEvent, Severity
from shared.schemas.event_catalog import DEFAULT_EVENT_CATALOG, EventCatalog
from shared.utils.time_utils import format_clock_time, format_event_type, local_hour


class AnomalyDetector:
    """Rule-based suspicious-activity detection."""

    def __init__(
        self,
        audit_service=None,
        audit_config: Optional[AuditConfig] = None,
        catalog: EventCatalog = DEFAULT_EVENT_CATALOG,
        logger=None
    ):
        self.audit_service = audit_service
        self.config = audit_config or AuditConfig()
        self.catalog = catalog
        self.logger = logger or get_component_logger("analytics.anomaly_detector")

    @property
    def business_hours(self) -> Tuple[int, int]:
        return self.config.business_hours_start, self.config.business_hours_end

    def set_business_hours(self, start: int, end: int) -> None:
        self.config = self.config.model_copy(
            update={'business_hours_start': start, 'business_hours_end': end}
        )

    def detect(self, events: List[AuditEvent]) -> List[AnomalyRecord]:
        """Run all rules; a single event may be flagged by more than one."""
        anomalies: List[AnomalyRecord] = []
        anomalies.extend(self._detect_high_volume(events))
        anomalies.extend(self._detect_after_hours(events))
        anomalies.extend(self._detect_service_accounts(events))

        self.logger.info(
            f"Detected {len(anomalies)} suspicious activities",
            extra={"event_count": len(events)}
        )
        return anomalies

    def _count_user_event_types(self, events: List[AuditEvent]) -> Dict[Tuple[str, str], int]:
        counts: Dict[Tuple[str, str], int] = OrderedDict()
        for event in events:
            key = (event.actor, event.event_type)
            counts[key] = counts.get(key, 0) + 1
        return counts

    def _detect_high_volume(self, events: List[AuditEvent]) -> List[AnomalyRecord]:
        records = []
        for (user, event_type), count in self._count_user_event_types(events).items():
            if count > self.config.volume_threshold and self.catalog.is_security_critical(event_type):
                records.append(AnomalyRecord(
                    type=AnomalyType.HIGH_VOLUME_SENSITIVE_ACTIONS,
                    user=user,
                    event_type=event_type,
                    severity=Severity.MEDIUM,
                    count=count,
                    description=f"User {user} performed {event_type} {count} times"
                ))
        return records

    def _detect_after_hours(self, events: List[AuditEvent]) -> List[AnomalyRecord]:
        start_hour, end_hour = self.business_hours
        records = []
        for event in events:
            created = event.created_at_utc
            if created is None or not self.catalog.is_security_critical(event.event_type):
                continue

            # End hour is inclusive: with 8-18, 18:59 is still business time
            hour = local_hour(created, self.config.timezone)
            if hour < start_hour or hour > end_hour:
                records.append(AnomalyRecord(
                    type=AnomalyType.AFTER_HOURS_ACTIVITY,
                    user=event.actor,
                    event_type=event.event_type,
                    severity=Severity.MEDIUM,
                    time=created,
                    description=(
                        f"After-hours security-critical activity: {event.event_type} "
                        f"by {event.actor} at {created.isoformat()}"
                    )
                ))
        return records

    def _detect_service_accounts(self, events: List[AuditEvent]) -> List[AnomalyRecord]:
        records = []
        for event in events:
            user = event.actor
            if (
                self.catalog.looks_like_service_account(user)
                and not self.catalog.is_routine_ci_event(event.event_type)
                and self.catalog.is_security_critical(event.event_type)
            ):
                records.append(AnomalyRecord(
                    type=AnomalyType.SERVICE_ACCOUNT_UNUSUAL_ACTIVITY,
                    user=user,
                    event_type=event.event_type,
                    severity=Severity.HIGH,
                    time=event.created_at_utc,
                    description=f"Service account {user} performed security-critical action {event.event_type}"
                ))
        return records

    async def summarize(self, anomalies: List[AnomalyRecord], days: int = 2) -> str:
        """Render anomalies grouped by rule, one warning line each."""
        if not anomalies:
            return f"Good news! I didn't detect any suspicious activities in the last {days} days."

        message = f"I've detected these potentially suspicious activities in the last {days} days:\n\n"

        grouped: Dict[AnomalyType, List[AnomalyRecord]] = OrderedDict()
        for anomaly in anomalies:
            grouped.setdefault(anomaly.type, []).append(anomaly)

        for anomaly_type, records in grouped.items():
            for record in records:
                user = await self._display_user(record.user)
                action = format_event_type(record.event_type)

                if anomaly_type == AnomalyType.HIGH_VOLUME_SENSITIVE_ACTIONS:
                    message += f"⚠️ User {user} performed {record.count} {action} actions\n"
                elif anomaly_type == AnomalyType.AFTER_HOURS_ACTIVITY:
                    time = format_clock_time(record.time, self.config.timezone)
                    message += f"⚠️ After-hours activity: {action} by {user} at {time}\n"
                elif anomaly_type == AnomalyType.SERVICE_ACCOUNT_UNUSUAL_ACTIVITY:
                    message += f"⚠️ Service account \"{user}\" performed unusual action: {action}\n"
                else:
                    message += f"⚠️ {record.description}\n"
            message += '\n'

        return message

    async def _display_user(self, user_id: str) -> str:
        # Service-account names are more telling than resolved display names
        if self.audit_service is None or self.catalog.looks_like_service_account(user_id):
            return user_id
        return await self.audit_service.format_user_display(user_id)
