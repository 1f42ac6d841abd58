"""Destinos de alertas.

Un sink nunca debe hacer fallar el ciclo de refresco: los errores de
entrega se loguean y se descartan.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Sequence

import requests

from ..core.domain.alerts import AlertEvent

logger = logging.getLogger(__name__)


class AlertSink(ABC):
    @abstractmethod
    def send(self, alert: AlertEvent) -> None:
        ...


class LoggingAlertSink(AlertSink):
    """Loguea cada alerta como línea greppable."""

    def send(self, alert: AlertEvent) -> None:
        logger.warning(
            "[ALERT] kind=%s building=%s threshold=%s prev=%s new=%.1f",
            alert.kind.value,
            alert.building_id,
            alert.threshold_name,
            alert.previous_score,
            alert.new_score,
        )


class CallbackAlertSink(AlertSink):
    """Entrega alertas a una función (tests, integraciones in-process)."""

    def __init__(self, callback: Callable[[AlertEvent], None]):
        self._callback = callback

    def send(self, alert: AlertEvent) -> None:
        self._callback(alert)


class WebhookAlertSink(AlertSink):
    """POST JSON de cada alerta a un webhook (ALERT_WEBHOOK_URL)."""

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        session: Optional[requests.Session] = None,
    ):
        self._url = url
        self._timeout = timeout
        self._session = session or requests.Session()

    def send(self, alert: AlertEvent) -> None:
        response = self._session.post(
            self._url,
            json=alert.to_dict(),
            headers={"Content-Type": "application/json"},
            timeout=self._timeout,
        )
        if response.ok:
            logger.info(
                "[ALERT_WEBHOOK] delivered kind=%s building=%s",
                alert.kind.value, alert.building_id,
            )
        else:
            logger.warning(
                "[ALERT_WEBHOOK] failed status=%s body=%s",
                response.status_code, (response.text or "")[:200],
            )


class CompositeAlertSink(AlertSink):
    """Reparte cada alerta a varios sinks, aislando fallos entre ellos."""

    def __init__(self, sinks: Sequence[AlertSink]):
        self._sinks: List[AlertSink] = list(sinks)

    def send(self, alert: AlertEvent) -> None:
        for sink in self._sinks:
            try:
                sink.send(alert)
            except Exception as e:
                logger.error(
                    "[ALERT] sink=%s failed kind=%s building=%s err=%s",
                    type(sink).__name__, alert.kind.value, alert.building_id, e,
                )


def sink_from_env() -> AlertSink:
    """Logging siempre; webhook si ALERT_WEBHOOK_URL está configurado."""
    sinks: List[AlertSink] = [LoggingAlertSink()]
    url = os.getenv("ALERT_WEBHOOK_URL")
    if url:
        sinks.append(WebhookAlertSink(url, timeout=float(os.getenv("ALERT_WEBHOOK_TIMEOUT", "5"))))
    return CompositeAlertSink(sinks)
