from __future__ import annotations

import logging
from typing import Any, Callable, Dict

import requests

logger = logging.getLogger(__name__)

Notifier = Callable[[Dict[str, Any]], None]


class WebhookNotifier:
    """POST the run snapshot as JSON to NOTIFY_WEBHOOK_URL."""

    def __init__(self, url: str, *, timeout=(5, 10), session: requests.Session | None = None):
        self.url = url
        self.timeout = timeout  # connect, read
        self.session = session or requests.Session()

    def __call__(self, snapshot: Dict[str, Any]) -> None:
        payload = {"event": f"scan_run.{snapshot.get('status')}", "scan_run": snapshot}
        headers = {"Content-Type": "application/json", "User-Agent": "linkwatch/1.0"}

        try:
            resp = self.session.post(self.url, json=payload, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning("webhook request failed run=%s error=%s", snapshot.get("id"), e)
            return

        if not (200 <= resp.status_code < 300):
            logger.warning(
                "webhook rejected run=%s status=%s body=%s",
                snapshot.get("id"), resp.status_code, (resp.text or "")[:300],
            )


def build_notifier(settings) -> Notifier | None:
    if not settings.notify_webhook_url:
        return None
    return WebhookNotifier(settings.notify_webhook_url)


def notify_safely(notifier: Notifier | None, snapshot: Dict[str, Any]) -> None:
    if notifier is None:
        return
    try:
        notifier(snapshot)
    except Exception:
        logger.exception("notifier failed run=%s", snapshot.get("id"))
