"""
Durable archive of the realtime message log.

Watches the ``messages`` subtree and mirrors each full snapshot into
SQL. Only the newest snapshot matters, so bursts of notifications are
coalesced into one sync pass, and a pass writes only the records that
changed since the last successful one.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Optional, Tuple

from database.repositories import MessageArchiveRepository
from database.session import session_scope

from .base import RealtimeStore, Unsubscribe
from .memory import RealtimeDatabase

logger = logging.getLogger(__name__)

RecordKey = Tuple[str, str]


def flatten_log(tree: Optional[Dict[str, Any]]) -> Dict[RecordKey, Dict[str, Any]]:
    """``{cid: {mid: record}}`` to ``{(cid, mid): record}``, skipping malformed entries."""
    return {
        (cid, mid): record
        for cid, records in (tree or {}).items() if isinstance(records, dict)
        for mid, record in records.items() if isinstance(record, dict)
    }


class MessageArchive:
    def __init__(
        self,
        store: RealtimeStore,
        path: str = "messages",
        scope: Callable = session_scope,
        retry_delay: float = 1.0,
    ):
        self._store = store
        self._path = path
        self._scope = scope
        self._retry_delay = retry_delay
        self._latest: Optional[Dict[str, Any]] = None
        # What SQL holds as of the last successful sync; None until known.
        self._synced: Optional[Dict[RecordKey, Dict[str, Any]]] = None
        self._dirty = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._unsubscribe: Optional[Unsubscribe] = None

    async def restore(self, database: RealtimeDatabase) -> int:
        """Load archived records into the tree; returns how many were loaded."""
        async with self._scope() as session:
            tree = await MessageArchiveRepository(session).load_tree()
        count = sum(len(records) for records in tree.values())
        if tree:
            database.load(self._path, tree)
        self._synced = flatten_log(tree)
        logger.info(f"Restored {count} archived messages across {len(tree)} conversations")
        return count

    def start(self) -> None:
        if self._task is not None:
            return
        self._unsubscribe = self._store.subscribe(self._path, self._on_snapshot)
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._dirty.is_set() or not self.in_sync:
            await self.flush()

    @property
    def in_sync(self) -> bool:
        if self._latest is None:
            return True
        return self._synced == flatten_log(self._latest)

    def _on_snapshot(self, snapshot) -> None:
        self._latest = snapshot.children()
        self._dirty.set()

    async def _run(self) -> None:
        while True:
            await self._dirty.wait()
            try:
                await self.flush()
            except Exception as e:
                # flush() re-marks the log dirty; retry after a pause.
                logger.error(f"Archive sync failed: {e}")
                await asyncio.sleep(self._retry_delay)

    async def flush(self) -> Tuple[int, int]:
        """Sync the newest snapshot now. Returns (upserted, deleted)."""
        self._dirty.clear()
        present = flatten_log(self._latest)
        try:
            async with self._scope() as session:
                repo = MessageArchiveRepository(session)
                if self._synced is None:
                    known = await repo.keys()
                    changed = present
                else:
                    known = set(self._synced)
                    changed = {key: record for key, record in present.items() if self._synced.get(key) != record}
                for (cid, mid), record in changed.items():
                    await repo.upsert(cid, mid, record)
                deleted = await repo.delete_many(known - set(present))
        except BaseException:
            self._dirty.set()
            raise
        self._synced = present
        logger.debug(f"Archive synced: {len(changed)} upserted, {deleted} deleted")
        return len(changed), deleted
