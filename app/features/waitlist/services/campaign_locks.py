import asyncio
import weakref
from typing import Dict


class CampaignLockRegistry:
    """
    One ``asyncio.Lock`` per campaign, so position writers for the same
    campaign run one at a time inside this process while different campaigns
    proceed in parallel. Cross-process exclusion comes from the campaign row
    lock taken inside the transaction.

    Locks are kept per event loop because an ``asyncio.Lock`` cannot be
    shared between loops (Celery tasks run each job in a fresh loop).
    """

    def __init__(self):
        self._locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, Dict[str, asyncio.Lock]]" = (
            weakref.WeakKeyDictionary()
        )

    def get(self, campaign_id: str) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        locks = self._locks.setdefault(loop, {})
        lock = locks.get(campaign_id)
        if lock is None:
            lock = locks[campaign_id] = asyncio.Lock()
        return lock


# Global singleton instance
campaign_locks = CampaignLockRegistry()
