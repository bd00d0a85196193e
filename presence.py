from datetime import datetime
from typing import Callable

from logging_config import get_logger
from schemas.messages import utcnow
from store import ChatStore

logger = get_logger(__name__)


class PresenceTracker:
    """Online/last-seen bookkeeping. Best-effort: failures are logged, never raised."""

    def __init__(self, store: ChatStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    async def on_connect(self, user_id: str) -> None:
        await self._update(user_id, True)

    async def on_disconnect(self, user_id: str) -> None:
        await self._update(user_id, False)

    async def _update(self, user_id: str, is_online: bool) -> None:
        try:
            await self.store.set_presence(user_id, is_online, self.clock())
            logger.debug(f"Presence for {user_id}: online={is_online}")
        except Exception as e:
            logger.error(f"Error updating presence for {user_id}: {e}", exc_info=True)
