# src/core/services/alerts.py
import logging
from typing import Awaitable, Callable, List, Optional

from aiogram import Bot

from src.core.config import get_settings
from src.core.errors import SideEffectResult

logger = logging.getLogger(__name__)

settings = get_settings()

_bot: Optional[Bot] = None


def _get_bot() -> Optional[Bot]:
    """Get or create bot instance for alerts"""
    global _bot
    if not settings.telegram_bot_token or not settings.admin_telegram_chat_id:
        return None
    if _bot is None:
        _bot = Bot(token=settings.telegram_bot_token)
    return _bot


async def alert_admin(text: str) -> SideEffectResult:
    """Send alert message to admin"""
    bot = _get_bot()
    if not bot:
        # No admin channel configured
        logger.info("[ALERT] %s", text)
        return SideEffectResult.success("alert_admin")
    try:
        await bot.send_message(chat_id=settings.admin_telegram_chat_id, text=text)
        return SideEffectResult.success("alert_admin")
    except Exception as e:
        logger.error("[ALERT FAILED] %s | Error: %s", text, e)
        return SideEffectResult.failure("alert_admin", e)


# async callables (user_id, RankUpgrade) registered by the notification collaborator
_rank_upgrade_listeners: List[Callable[[str, object], Awaitable[None]]] = []


def register_rank_upgrade_listener(listener: Callable[[str, object], Awaitable[None]]):
    _rank_upgrade_listeners.append(listener)


def clear_rank_upgrade_listeners():
    _rank_upgrade_listeners.clear()


async def notify_rank_upgrade(user_id: str, upgrade) -> SideEffectResult:
    """
    Promotion notification trigger point.
    Delivery content lives with the listeners; this only fires them.
    """
    if not settings.rank_upgrade_notification_enabled:
        return SideEffectResult.success("notify_rank_upgrade")

    logger.info(
        "[NOTIFICATION] Rank upgrade for %s: %s -> %s",
        user_id, upgrade.previous_tier.value, upgrade.new_tier.value,
    )
    for listener in list(_rank_upgrade_listeners):
        try:
            await listener(user_id, upgrade)
        except Exception as e:
            return SideEffectResult.failure("notify_rank_upgrade", e)
    return SideEffectResult.success("notify_rank_upgrade")


def format_job_summary(result) -> str:
    """Admin alert text for a finished job"""
    status = "OK" if not result.errors else "ERRORS"
    lines = [
        f"📊 {result.job} ({status})",
        f"├ Processed: {result.processed}",
        f"├ Updated: {result.updated}",
        f"├ Skipped: {result.skipped}",
        f"└ Errors: {result.errors}",
    ]
    if result.truncated:
        lines.append("⚠️ Stopped early: wall-clock budget reached")
    return "\n".join(lines)
