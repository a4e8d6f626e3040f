"""
Alert Manager for Telegram notifications.

Turns tracker notifications into Telegram messages, with deduplication to
prevent spam.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import requests

from goal_trader.core.notifications import Notification, NotificationType

logger = logging.getLogger(__name__)


@dataclass
class AlertRecord:
    """Tracks when an alert was last sent."""

    key: str
    last_sent: float  # Unix timestamp
    count: int = 1


class AlertManager:
    """
    Manages alerts with deduplication.

    Usage:
        manager = AlertManager(
            telegram_bot_token="...",
            telegram_chat_id="...",
        )
        outbox.subscribe(manager.handle_notification)

        # Or directly
        manager.alert_goal("Arsenal vs Chelsea", "0-0", "1-0", "home", 23)
    """

    DEFAULT_COOLDOWN = 300  # 5 minutes

    def __init__(
        self,
        telegram_bot_token: Optional[str] = None,
        telegram_chat_id: Optional[str] = None,
        default_cooldown: int = DEFAULT_COOLDOWN,
        _telegram_api: Optional[Any] = None,  # For testing
    ) -> None:
        """
        Args:
            telegram_bot_token: Bot token from @BotFather
            telegram_chat_id: Chat ID to send messages to
            default_cooldown: Default cooldown between duplicate alerts
            _telegram_api: Injected API client for testing
        """
        self._bot_token = telegram_bot_token
        self._chat_id = telegram_chat_id
        self._default_cooldown = default_cooldown
        self._telegram_api = _telegram_api

        self._sent_alerts: Dict[str, AlertRecord] = {}

    @property
    def is_configured(self) -> bool:
        return self._telegram_api is not None or bool(self._bot_token and self._chat_id)

    # =========================================================================
    # Notification listener
    # =========================================================================

    async def handle_notification(self, notification: Notification) -> None:
        """Outbox listener. Sending is blocking, so it runs in a worker thread."""
        handlers: Dict[NotificationType, Callable[[Notification], bool]] = {
            NotificationType.GOAL: self._on_goal,
            NotificationType.CANCELLATION: self._on_cancellation,
            NotificationType.POSITION_OPENED: self._on_position_opened,
            NotificationType.POSITION_CLOSED: self._on_position_closed,
            NotificationType.MATCH_FINISHED: self._on_match_finished,
            NotificationType.ACTION_FAILURES: self._on_action_failures,
            NotificationType.DISCOVERY_OUTAGE: self._on_discovery_outage,
        }
        handler = handlers.get(notification.type)
        if handler is None:
            return
        await asyncio.to_thread(handler, notification)

    def _on_goal(self, n: Notification) -> bool:
        d = n.data
        return self.alert_goal(
            d.get("label", n.match_id), d.get("previous_score"), d.get("score"),
            d.get("side"), d.get("minute"),
        )

    def _on_cancellation(self, n: Notification) -> bool:
        d = n.data
        return self.alert_cancellation(
            n.match_id, d.get("previous_score"), d.get("score"), d.get("minute"),
        )

    def _on_position_opened(self, n: Notification) -> bool:
        d = n.data
        return self.alert_position_opened(
            d.get("position_id"), d.get("label", n.match_id), d.get("kind"),
            d.get("amount"), d.get("shares"), d.get("price"),
        )

    def _on_position_closed(self, n: Notification) -> bool:
        d = n.data
        return self.alert_position_closed(
            d.get("position_id"), d.get("label", n.match_id), d.get("kind"),
            d.get("shares"), d.get("price"), d.get("reason"),
        )

    def _on_match_finished(self, n: Notification) -> bool:
        d = n.data
        return self.alert_match_finished(
            n.match_id, d.get("label", n.match_id), d.get("score"), d.get("open_positions", 0),
        )

    def _on_action_failures(self, n: Notification) -> bool:
        return self.alert_action_failures(n.match_id, n.data.get("errors", []))

    def _on_discovery_outage(self, n: Notification) -> bool:
        return self.alert_discovery_outage(n.data.get("minutes", 0), n.data.get("reason", ""))

    # =========================================================================
    # Alerts
    # =========================================================================

    def send_alert(
        self,
        title: str,
        message: str,
        dedup_key: Optional[str] = None,
        cooldown_seconds: Optional[int] = None,
        priority: str = "normal",
    ) -> bool:
        """
        Send an alert via Telegram.

        Args:
            title: Alert title
            message: Alert message body
            dedup_key: Key for deduplication (None to skip dedup)
            cooldown_seconds: Cooldown for this specific alert
            priority: Priority level ("low", "normal", "high", "critical")

        Returns:
            True if alert was sent, False if deduplicated or failed
        """
        if dedup_key:
            cooldown = cooldown_seconds or self._default_cooldown
            if not self._should_send(dedup_key, cooldown):
                logger.debug(f"Deduplicated alert: {dedup_key}")
                return False

        formatted = self._format_message(title, message, priority)
        success = self._send_telegram(formatted)

        if dedup_key and success:
            self._record_sent(dedup_key)

        return success

    def alert_goal(
        self,
        label: str,
        previous_score: Optional[str],
        score: Optional[str],
        side: Optional[str],
        minute: Optional[int],
    ) -> bool:
        minute_text = f"{minute}'" if minute is not None else "?"
        message = f"""
Match: {label}
Score: {previous_score} -> {score}
Scored: {side}
Minute: {minute_text}
"""
        return self.send_alert(
            title="⚽ Goal",
            message=message,
            dedup_key=f"goal_{label}_{score}",
            cooldown_seconds=600,
            priority="normal",
        )

    def alert_cancellation(
        self,
        match_id: Optional[str],
        previous_score: Optional[str],
        score: Optional[str],
        minute: Optional[int],
    ) -> bool:
        message = f"""
Match: {match_id}
Score corrected: {previous_score} -> {score}
Minute: {minute}
No trades placed.
"""
        return self.send_alert(
            title="↩️ Goal Cancelled",
            message=message,
            dedup_key=f"cancel_{match_id}_{score}",
            cooldown_seconds=600,
            priority="high",
        )

    def alert_position_opened(
        self,
        position_id: Optional[str],
        label: str,
        kind: Optional[str],
        amount: Optional[str],
        shares: Optional[str],
        price: Optional[str],
    ) -> bool:
        message = f"""
Match: {label}
Position: {kind} ({position_id})
Amount: ${amount}
Shares: {shares} @ {price}
"""
        return self.send_alert(
            title="📈 Position Opened",
            message=message,
            dedup_key=None,
            priority="normal",
        )

    def alert_position_closed(
        self,
        position_id: Optional[str],
        label: str,
        kind: Optional[str],
        shares: Optional[str],
        price: Optional[str],
        reason: Optional[str],
    ) -> bool:
        message = f"""
Match: {label}
Position: {kind} ({position_id})
Sold: {shares} @ {price}
Reason: {reason}
"""
        return self.send_alert(
            title="📉 Position Reduced",
            message=message,
            dedup_key=None,
            priority="normal",
        )

    def alert_match_finished(
        self,
        match_id: Optional[str],
        label: str,
        score: Optional[str],
        open_positions: int,
    ) -> bool:
        message = f"""
Match: {label}
Final score: {score}
Positions to liquidate: {open_positions}
"""
        return self.send_alert(
            title="🏁 Match Finished",
            message=message,
            dedup_key=f"finished_{match_id}",
            cooldown_seconds=3600,
            priority="low",
        )

    def alert_action_failures(self, match_id: Optional[str], errors: List[str]) -> bool:
        lines = "\n".join(f"- {e}" for e in errors[:10])
        message = f"""
Match: {match_id or 'n/a'}
Failed actions: {len(errors)}
{lines}
"""
        return self.send_alert(
            title="🔴 Trade Failures",
            message=message,
            dedup_key=f"failures_{match_id}",
            cooldown_seconds=60,
            priority="high",
        )

    def alert_discovery_outage(self, minutes: int, reason: str) -> bool:
        message = f"""
No matches discovered for {minutes} minutes.
Last error: {reason}
"""
        return self.send_alert(
            title="Discovery Outage",
            message=message,
            dedup_key="discovery_outage",
            cooldown_seconds=3600,
            priority="critical",
        )

    # =========================================================================
    # Internal
    # =========================================================================

    def _should_send(self, key: str, cooldown: int) -> bool:
        record = self._sent_alerts.get(key)
        if record is None:
            return True
        return (time.time() - record.last_sent) >= cooldown

    def _record_sent(self, key: str) -> None:
        now = time.time()
        if key in self._sent_alerts:
            self._sent_alerts[key].last_sent = now
            self._sent_alerts[key].count += 1
        else:
            self._sent_alerts[key] = AlertRecord(key=key, last_sent=now)

    def _format_message(self, title: str, message: str, priority: str) -> str:
        priority_markers = {
            "critical": "🚨🚨🚨",
            "high": "⚠️",
            "normal": "",
            "low": "ℹ️",
        }
        marker = priority_markers.get(priority, "")
        header = f"{marker} *{title}*" if marker else f"*{title}*"
        return f"{header}\n\n{message.strip()}"

    def _send_telegram(self, text: str) -> bool:
        # Use injected API for testing
        if self._telegram_api:
            try:
                self._telegram_api.send_message(
                    chat_id=self._chat_id,
                    text=text,
                    parse_mode="Markdown",
                )
                return True
            except Exception as e:
                logger.error(f"Telegram API error: {e}")
                return False

        if not self._bot_token or not self._chat_id:
            logger.debug("Telegram credentials not configured")
            return False

        url = f"https://api.telegram.org/bot{self._bot_token}/sendMessage"
        payload = {
            "chat_id": self._chat_id,
            "text": text,
            "parse_mode": "Markdown",
        }
        try:
            response = requests.post(url, json=payload, timeout=10)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"Failed to send Telegram alert: {e}")
            return False

        logger.info(f"Sent Telegram alert: {text[:50]}...")
        return True

    def clear_dedup_cache(self) -> None:
        self._sent_alerts.clear()

    def get_alert_stats(self) -> Dict[str, int]:
        return {
            "unique_alerts": len(self._sent_alerts),
            "total_sent": sum(r.count for r in self._sent_alerts.values()),
        }
