"""Alert channels for trade and risk notifications."""

from __future__ import annotations

from collections.abc import Iterable

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from decision_engine.config import Settings
from decision_engine.ports import Notifier
from decision_engine.utils.logging import get_logger

_MAX_ATTEMPTS = 2


class AlertError(Exception):
    """Raised when an alert cannot be delivered."""


class LogNotifier:
    """Writes alerts to the structured log."""

    def __init__(self) -> None:
        self._logger = get_logger("decision_engine.notify.log")

    def notify(self, title: str, message: str) -> None:
        self._logger.warning("alert", title=title, message=message)


class WebhookNotifier:
    """Posts alerts as JSON to a webhook endpoint.

    Delivery runs on the tick thread, so it is bounded: two attempts of at most
    `alert_timeout` seconds each with a half-second pause between them.
    """

    def __init__(self, settings: Settings, client: httpx.Client | None = None) -> None:
        if not settings.alert_webhook_url:
            raise ValueError("missing_alert_webhook_url")
        self._url = settings.alert_webhook_url
        self._timeout = settings.alert_timeout
        self._symbol = settings.symbol
        self._client = client
        self._logger = get_logger("decision_engine.notify.webhook")

    def notify(self, title: str, message: str) -> None:
        self._post({"title": title, "message": message, "symbol": self._symbol})
        self._logger.debug("alert_delivered", title=title)

    @retry(
        retry=retry_if_exception_type(AlertError),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=1),
        stop=stop_after_attempt(_MAX_ATTEMPTS),
        reraise=True,
    )
    def _post(self, payload: dict[str, str]) -> None:
        try:
            if self._client is not None:
                response = self._client.post(self._url, json=payload, timeout=self._timeout)
                response.raise_for_status()
                return
            with httpx.Client(timeout=self._timeout) as client:
                response = client.post(self._url, json=payload)
                response.raise_for_status()
        except (httpx.HTTPError, httpx.TimeoutException) as exc:
            raise AlertError(str(exc)) from exc


class MultiChannelNotifier:
    """Fans one alert out to every channel; a failing channel does not stop the rest."""

    def __init__(self, channels: Iterable[Notifier]) -> None:
        self._channels = list(channels)
        self._logger = get_logger("decision_engine.notify.multi")

    def notify(self, title: str, message: str) -> None:
        for channel in self._channels:
            try:
                channel.notify(title, message)
            except Exception as exc:  # noqa: BLE001 - one broken channel must not mute others.
                self._logger.warning(
                    "alert_channel_failed",
                    channel=type(channel).__name__,
                    error=str(exc),
                )


def build_notifier(settings: Settings) -> Notifier:
    """Log channel always; webhook channel when a URL is configured."""
    channels: list[Notifier] = [LogNotifier()]
    if settings.alert_webhook_url:
        channels.append(WebhookNotifier(settings))
    return MultiChannelNotifier(channels)
