import asyncio
import logging

from db.enums import ProviderAction

logger = logging.getLogger(__name__)


class ActionQueue:
    """In-process mapping of provider action -> pending provider ids."""

    def __init__(self):
        self._lock = asyncio.Lock()
        self._pending: dict[str, set[str]] = {}

    async def enqueue(self, action: ProviderAction, provider_id: str):
        async with self._lock:
            self._pending.setdefault(action.value, set()).add(provider_id)
        logger.debug(f"Queued {action} for provider {provider_id}")

    async def drain(self, action: ProviderAction) -> set[str]:
        """Return the pending provider ids of ``action`` and clear them."""
        async with self._lock:
            return self._pending.pop(action.value, set())

    async def pending(self, action: ProviderAction) -> bool:
        async with self._lock:
            return bool(self._pending.get(action.value))

    async def snapshot(self) -> dict[str, list[str]]:
        async with self._lock:
            return {action: sorted(ids) for action, ids in self._pending.items() if ids}
