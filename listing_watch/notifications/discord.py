"""
Discord webhook notifier.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

import requests

from listing_watch.domain.listings import MISSING_PRICE, Listing, Target
from listing_watch.domain.monitoring import RunCounters, SessionState
from listing_watch.notifications.base import Notifier
from listing_watch.scraping.logging_utils import describe_error, log_event

logger = logging.getLogger(__name__)

LISTING_CONTENT = "**New eBay Listing Found!**"
LISTING_COLOR = 0x0066CC
ERROR_COLOR = 0xCC3333
HEALTH_COLOR = 0x33AA55
SCREENSHOT_FILENAME = "listing.png"
MAX_EMBED_DESCRIPTION = 4000


def build_listing_payload(
    target: Target,
    listing: Listing,
    *,
    has_screenshot: bool = False,
    now: datetime | None = None,
) -> dict[str, Any]:
    embed: dict[str, Any] = {
        "title": listing.title,
        "url": listing.url,
        "color": LISTING_COLOR,
        "fields": [
            {
                "name": "Price",
                "value": listing.price if listing.price != MISSING_PRICE else "Price not available",
                "inline": True,
            }
        ],
        "footer": {"text": f"eBay Listing Monitor | {target.name}"},
        "timestamp": (now or datetime.now(timezone.utc)).isoformat(),
    }
    if has_screenshot:
        embed["image"] = {"url": f"attachment://{SCREENSHOT_FILENAME}"}
    elif listing.image:
        embed["image"] = {"url": listing.image}
    return {"content": LISTING_CONTENT, "embeds": [embed]}


def build_health_payload(
    counters: RunCounters,
    session_state: SessionState,
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    current = now or datetime.now(timezone.utc)
    uptime_hours = counters.uptime_seconds(current) / 3600
    last_success = (
        counters.last_success_at.isoformat() if counters.last_success_at else "never"
    )
    return {
        "embeds": [
            {
                "title": "Listing monitor health",
                "color": HEALTH_COLOR,
                "fields": [
                    {"name": "Uptime", "value": f"{uptime_hours:.1f}h", "inline": True},
                    {"name": "Cycles", "value": str(counters.cycles_completed), "inline": True},
                    {"name": "Notified", "value": str(counters.listings_notified), "inline": True},
                    {"name": "Session", "value": session_state.phase.value, "inline": True},
                    {
                        "name": "Consecutive failures",
                        "value": str(session_state.consecutive_failures),
                        "inline": True,
                    },
                    {"name": "Last successful cycle", "value": last_success, "inline": False},
                ],
                "timestamp": current.isoformat(),
            }
        ]
    }


def build_startup_payload(targets: Sequence[Target]) -> dict[str, Any]:
    lines = []
    for target in targets:
        line = f"- **{target.name}**: `{target.query}`"
        if target.required_keywords:
            line += f" (requires: {', '.join(target.required_keywords)})"
        lines.append(line)
    description = "\n".join(lines) or "No targets configured."
    return {
        "embeds": [
            {
                "title": f"Listing monitor started ({len(targets)} targets)",
                "description": description[:MAX_EMBED_DESCRIPTION],
                "color": LISTING_COLOR,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        ]
    }


def build_error_payload(message: str) -> dict[str, Any]:
    return {
        "embeds": [
            {
                "title": "Listing monitor error",
                "description": message[:MAX_EMBED_DESCRIPTION],
                "color": ERROR_COLOR,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        ]
    }


class DiscordNotifier(Notifier):
    def __init__(
        self,
        *,
        default_webhook_url: str | None,
        alert_webhook_url: str | None = None,
        session: requests.Session | None = None,
        timeout_seconds: float = 10.0,
        username: str | None = None,
    ) -> None:
        self._default_webhook_url = default_webhook_url
        self._alert_webhook_url = alert_webhook_url or default_webhook_url
        self._session = session or requests.Session()
        self._timeout_seconds = timeout_seconds
        self._username = username

    def notify_new_listing(
        self,
        target: Target,
        listing: Listing,
        screenshot: bytes | None = None,
    ) -> bool:
        payload = build_listing_payload(target, listing, has_screenshot=bool(screenshot))
        return self._post(
            target.channel or self._default_webhook_url,
            payload,
            kind="listing",
            screenshot=screenshot or None,
            listing_id=listing.id,
            target=target.name,
        )

    def notify_error(self, message: str) -> bool:
        return self._post(self._alert_webhook_url, build_error_payload(message), kind="error")

    def notify_health(self, counters: RunCounters, session_state: SessionState) -> bool:
        return self._post(
            self._alert_webhook_url,
            build_health_payload(counters, session_state),
            kind="health",
        )

    def notify_startup(self, targets: Sequence[Target]) -> bool:
        return self._post(self._alert_webhook_url, build_startup_payload(targets), kind="startup")

    def close(self) -> None:
        self._session.close()

    def _post(
        self,
        webhook_url: str | None,
        payload: dict[str, Any],
        *,
        kind: str,
        screenshot: bytes | None = None,
        **fields: Any,
    ) -> bool:
        if not webhook_url:
            log_event(logger, logging.WARNING, "notification_skipped_no_webhook", kind=kind, **fields)
            return False

        if self._username:
            payload = {**payload, "username": self._username}

        try:
            if screenshot:
                response = self._session.post(
                    webhook_url,
                    data={"payload_json": json.dumps(payload)},
                    files={"file": (SCREENSHOT_FILENAME, screenshot, "image/png")},
                    timeout=self._timeout_seconds,
                )
            else:
                response = self._session.post(
                    webhook_url,
                    json=payload,
                    timeout=self._timeout_seconds,
                )
        except requests.RequestException as exc:
            log_event(
                logger,
                logging.ERROR,
                "notification_failed",
                kind=kind,
                error=describe_error(exc),
                **fields,
            )
            return False

        if not response.ok:
            log_event(
                logger,
                logging.ERROR,
                "notification_rejected",
                kind=kind,
                status_code=response.status_code,
                body=response.text[:300],
                **fields,
            )
            return False

        log_event(logger, logging.INFO, "notification_sent", kind=kind, **fields)
        return True
