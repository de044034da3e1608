"""
Snapshot Writer - periodic single-document dumps of the variable namespace.

The snapshot is the crash-recovery path: on the next start the host calls
``load_snapshot`` to restore variables and bindings. Media payloads are not
part of the document; they stay in the large-object database and the
snapshot keeps their references.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from nodeflow.utils.io import atomic_write

if TYPE_CHECKING:
    from nodeflow.storage.manager import StorageManager

logger = logging.getLogger(__name__)


async def write_snapshot(storage: StorageManager, path: Path) -> dict[str, Any]:
    """Export the namespace and atomically write it to ``path``."""
    document = await storage.export_variables()

    def _write():
        with atomic_write(path) as f:
            json.dump(document, f, ensure_ascii=False, indent=2, default=str)

    await asyncio.to_thread(_write)
    logger.debug(f"Wrote snapshot of {len(document['variables'])} variables to {path}")
    return document


async def read_snapshot(path: Path) -> dict[str, Any] | None:
    def _read():
        if not path.exists():
            return None
        with open(path, encoding="utf-8") as f:
            return json.load(f)

    return await asyncio.to_thread(_read)


async def load_snapshot(storage: StorageManager, path: Path) -> int:
    """Restore a snapshot into ``storage``. Returns the number of variables restored."""
    document = await read_snapshot(Path(path))
    if document is None:
        logger.info(f"No snapshot at {path}")
        return 0
    return await storage.import_variables(document)


class SnapshotWriter:
    """
    Writes a snapshot every ``interval`` seconds while running.

    Example:
        writer = SnapshotWriter(storage, path, interval=30)
        writer.start()
        ...
        await writer.stop()   # writes one final snapshot
    """

    def __init__(self, storage: StorageManager, path: Path | str, interval: float | None = None):
        self.storage = storage
        self.path = Path(path)
        self.interval = interval if interval is not None else storage.config.snapshot_interval
        self._task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()
        self.snapshots_written = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._loop())
        logger.info(f"▶ Snapshot writer started ({self.interval}s → {self.path})")

    async def stop(self, final_snapshot: bool = True) -> None:
        if self._task is None:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        if final_snapshot:
            await self.snapshot()
        logger.info("⏹ Snapshot writer stopped")

    async def snapshot(self) -> None:
        await write_snapshot(self.storage, self.path)
        self.snapshots_written += 1

    async def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except TimeoutError:
                pass
            else:
                break
            try:
                await self.snapshot()
            except OSError as e:
                logger.error(f"✗ Snapshot failed: {e}")
