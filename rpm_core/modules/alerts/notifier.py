"""
Alert notification dispatch.

Dispatch is fire-and-forget from the caller's point of view: implementations
raise ``NotificationDispatchError`` and callers log it without undoing any
alert state.
"""

import asyncio
from typing import Any, Iterable, Protocol

import httpx
import structlog

from rpm_core.core.config import settings
from rpm_core.modules.alerts.models import Alert
from rpm_core.modules.alerts.schemas import AlertEvent, AlertOut
from rpm_core.shared.exceptions import NotificationDispatchError
from rpm_core.shared.time import utcnow

log = structlog.get_logger()

ALL_PATIENTS = "*"


def build_event(alert: Alert, escalation_level: int) -> dict[str, Any]:
    event = AlertEvent(
        event="alert" if escalation_level == 0 else "alert_escalated",
        escalation_level=escalation_level,
        alert=AlertOut.from_document(alert),
        timestamp=utcnow(),
    )
    return event.model_dump(by_alias=True, mode="json")


class AlertNotifier(Protocol):
    async def notify(self, alert: Alert, escalation_level: int) -> None: ...


class StreamNotifier:
    """Fan alert events out to server-sent-event subscriber queues keyed by patient."""

    def __init__(self) -> None:
        self._queues: dict[str, list[asyncio.Queue[dict[str, Any]]]] = {}

    def subscribe(
        self, queue: asyncio.Queue[dict[str, Any]], patient_id: str | None = None
    ) -> None:
        key = self._normalize_patient_id(patient_id)
        self._queues.setdefault(key, []).append(queue)

    def unsubscribe(self, queue: asyncio.Queue[dict[str, Any]]) -> None:
        for key, queues in list(self._queues.items()):
            if queue in queues:
                queues.remove(queue)
            if not queues:
                self._queues.pop(key, None)

    def subscriber_count(self, patient_id: str | None = None) -> int:
        return len(self._queues.get(self._normalize_patient_id(patient_id), []))

    async def notify(self, alert: Alert, escalation_level: int) -> None:
        payload = build_event(alert, escalation_level)
        delivered = 0
        for queue in self._iter_queues(alert.patient_id):
            try:
                queue.put_nowait(payload)
                delivered += 1
            except asyncio.QueueFull:
                # Slow consumer; it will see the alert on its next list call
                log.warning(
                    "alert_stream_queue_full",
                    alert_id=str(alert.id),
                    patient_id=alert.patient_id,
                )
        log.debug("alert_stream_delivered", alert_id=str(alert.id), subscribers=delivered)

    def _iter_queues(self, patient_id: str) -> Iterable[asyncio.Queue[dict[str, Any]]]:
        seen: set[int] = set()
        for key in (self._normalize_patient_id(patient_id), ALL_PATIENTS):
            for queue in self._queues.get(key, []):
                if id(queue) in seen:
                    continue
                seen.add(id(queue))
                yield queue

    @staticmethod
    def _normalize_patient_id(patient_id: str | None) -> str:
        if not patient_id or patient_id.strip().lower() in {"*", "all"}:
            return ALL_PATIENTS
        return patient_id.strip()


class WebhookNotifier:
    """POST alert events as JSON to a configured endpoint."""

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._transport = transport

    async def notify(self, alert: Alert, escalation_level: int) -> None:
        payload = build_event(alert, escalation_level)
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.post(self._url, json=payload)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise NotificationDispatchError(
                f"webhook delivery failed for alert {alert.id}: {exc}"
            ) from exc


class FanoutNotifier:
    """Deliver to every channel; report failure only after all were attempted."""

    def __init__(self, notifiers: Iterable[AlertNotifier]) -> None:
        self._notifiers = list(notifiers)

    async def notify(self, alert: Alert, escalation_level: int) -> None:
        failures: list[str] = []
        for notifier in self._notifiers:
            try:
                await notifier.notify(alert, escalation_level)
            except Exception as exc:
                failures.append(f"{type(notifier).__name__}: {exc}")
        if failures:
            raise NotificationDispatchError("; ".join(failures))


def build_notifier(stream: StreamNotifier) -> AlertNotifier:
    notifiers: list[AlertNotifier] = [stream]
    if settings.NOTIFICATION_WEBHOOK_URL:
        notifiers.append(
            WebhookNotifier(
                settings.NOTIFICATION_WEBHOOK_URL,
                timeout=settings.NOTIFICATION_TIMEOUT_SECONDS,
            )
        )
    return FanoutNotifier(notifiers)
