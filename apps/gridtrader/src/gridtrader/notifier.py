"""Notification sender with Telegram support and throttling.

Sends risk alerts via Telegram with per-key throttling to avoid spam.
Thread-safe so it can be called from venue adapter threads as well as
the runner's event loop.
"""

import logging
import threading
from datetime import datetime, UTC, timedelta
from typing import Optional

from gridrisk import GridStrategyError, StopReason

from gridtrader.config import TelegramConfig

logger = logging.getLogger(__name__)

# Throttle: max 1 alert per key per this many seconds
_DEFAULT_THROTTLE_SECONDS = 60


class Notifier:
    """Sends alerts via Telegram with throttling.

    Telegram messages go out from a background thread so the trading
    loop never blocks on them. Without a Telegram config the notifier
    only logs.
    """

    def __init__(
        self,
        telegram_config: Optional[TelegramConfig] = None,
        throttle_seconds: int = _DEFAULT_THROTTLE_SECONDS,
    ):
        self._telegram_config = telegram_config
        self._throttle_seconds = throttle_seconds
        self._bot = None
        self._lock = threading.Lock()
        self._last_sent: dict[str, datetime] = {}

        if telegram_config:
            try:
                import telebot

                self._bot = telebot.TeleBot(telegram_config.bot_token)
                logger.info("Telegram notifier initialized")
            except ImportError:
                logger.warning(
                    "pyTelegramBotAPI not installed, Telegram alerts disabled. "
                    "Install with: pip install 'gridtrader[telegram]'"
                )
            except Exception as e:
                logger.warning(f"Failed to initialize Telegram bot: {e}")

    def alert(self, message: str, error_key: Optional[str] = None) -> bool:
        """Send an alert message.

        Always logs. Sends to Telegram if configured and not throttled.

        Args:
            message: Alert text.
            error_key: Key for throttling. If None, the message itself is used.

        Returns:
            True if a Telegram send was started.
        """
        logger.error(f"ALERT: {message}")

        if self._bot is None:
            return False

        key = error_key or message
        now = datetime.now(UTC)

        with self._lock:
            last = self._last_sent.get(key)
            if last and (now - last) < timedelta(seconds=self._throttle_seconds):
                return False
            self._last_sent[key] = now

        thread = threading.Thread(
            target=self._send_telegram,
            args=(message,),
            daemon=True,
        )
        thread.start()
        return True

    def alert_stop(self, asset: str, reason: StopReason, status: str) -> bool:
        """Alert that a run stopped on a risk limit or operationally."""
        kind = "risk stop" if reason.requires_liquidation else "stop"
        return self.alert(f"Gridtrader {asset} {kind}: {reason}\n{status}", error_key=f"stop_{reason}")

    def alert_error(self, context: str, error: GridStrategyError) -> bool:
        """Alert on a fatal taxonomy error."""
        return self.alert(
            f"Gridtrader: {context} - {error} (severity {error.severity})",
            error_key=f"{context}_{error.kind}",
        )

    def _send_telegram(self, message: str) -> None:
        """Send a message via Telegram (runs in background thread)."""
        try:
            self._bot.send_message(
                chat_id=self._telegram_config.chat_id,
                text=message,
            )
        except Exception as e:
            logger.warning(f"Failed to send Telegram message: {e}")
