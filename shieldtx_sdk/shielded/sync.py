"""
Shielded sync coordinator.

Block ranges are fetched concurrently by a bounded worker pool, but they
are applied to the shielded context one range at a time in height order,
so the result is the same as a sequential scan.
"""
import logging
import signal
import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import contextmanager
from typing import Deque, Iterator, List, Optional, Sequence, Tuple

from ..exceptions import SyncIncompleteError
from ..models import ShieldedBlock
from ..session import ChainSession
from .notes import ViewingKey

logger = logging.getLogger(__name__)

BlockRange = Tuple[int, int]


class ShieldedSyncCoordinator:
    """
    Scans chain blocks into the session's shielded context.

    Args:
        session: Chain session owning the shielded context
        viewing_keys: Keys whose notes are recorded
        batch_size: Number of blocks per fetched range
        workers: Maximum number of concurrent range fetches
        shutdown: Event that stops the scan between ranges when set
    """

    def __init__(
        self,
        session: ChainSession,
        viewing_keys: Sequence[ViewingKey],
        batch_size: int = 10,
        workers: int = 4,
        shutdown: Optional[threading.Event] = None
    ):
        if batch_size <= 0 or workers <= 0:
            raise ValueError("batch_size and workers must be positive")
        self.session = session
        self.viewing_keys = list(viewing_keys)
        self.batch_size = batch_size
        self.workers = workers
        self.shutdown = shutdown or threading.Event()

    def _ranges(self, start: int, end: int) -> List[BlockRange]:
        return [
            (lo, min(lo + self.batch_size - 1, end))
            for lo in range(start, end + 1, self.batch_size)
        ]

    def sync(
        self,
        start_height: Optional[int] = None,
        required_height: Optional[int] = None,
        end_height: Optional[int] = None
    ) -> int:
        """
        Scan from the checkpoint (or start_height, whichever is lower) to the tip.

        Without a checkpoint, start_height is the birthday of the viewing
        keys and earlier history is not scanned.

        Args:
            start_height: Height the scan must start at or before
            required_height: Height the checkpoint must reach
            end_height: Last height to scan (defaults to the chain tip)

        Returns:
            The checkpoint after the scan

        Raises:
            SyncIncompleteError: If the scan was cancelled or stopped below
                required_height
            TransportError: If fetching a block range failed
        """
        ctx = self.session.shielded
        if ctx.checkpoint is None:
            start = 1 if start_height is None else start_height
        else:
            resume = ctx.checkpoint + 1
            start = resume if start_height is None else min(start_height, resume)
        end = self.session.latest_block_height() if end_height is None else end_height

        ranges = self._ranges(start, end)
        logger.info(f"Syncing shielded state from height {start} to {end} ({len(ranges)} batches)")

        found = 0
        interrupted = False
        truncated = False
        pending: Deque[Tuple[BlockRange, Future]] = deque()
        remaining = iter(ranges)

        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="shielded-sync") as executor:
            def schedule() -> None:
                while len(pending) < self.workers:
                    block_range = next(remaining, None)
                    if block_range is None:
                        return
                    pending.append((block_range, executor.submit(self.session.fetch_blocks, *block_range)))

            schedule()
            try:
                while pending:
                    if self.shutdown.is_set():
                        interrupted = True
                        break
                    (lo, hi), future = pending.popleft()
                    applied, covered = self._apply_range(lo, hi, future.result())
                    found += applied
                    if covered >= lo:
                        ctx.checkpoint = covered if ctx.checkpoint is None else max(ctx.checkpoint, covered)
                    if covered < hi:
                        logger.warning(f"Node returned blocks {lo}-{covered} for requested range {lo}-{hi}")
                        truncated = True
                        break
                    logger.debug(f"Scanned blocks {lo}-{hi}")
                    schedule()
            finally:
                for _, future in pending:
                    future.cancel()
                ctx.save()

        if interrupted:
            logger.warning(f"Shielded sync cancelled at checkpoint {ctx.checkpoint}")
            raise SyncIncompleteError(
                f"Shielded sync cancelled at height {ctx.checkpoint}",
                checkpoint=ctx.checkpoint,
                required_height=required_height
            )
        if truncated:
            raise SyncIncompleteError(
                f"Shielded sync stopped at height {ctx.checkpoint}: node skipped blocks",
                checkpoint=ctx.checkpoint,
                required_height=required_height
            )
        if required_height is not None and (ctx.checkpoint or 0) < required_height:
            raise SyncIncompleteError(
                f"Shielded sync reached height {ctx.checkpoint}, need {required_height}",
                checkpoint=ctx.checkpoint,
                required_height=required_height
            )

        logger.info(f"Shielded sync done at height {ctx.checkpoint}, {found} new note(s)")
        return ctx.checkpoint or 0

    def _apply_range(self, lo: int, hi: int, blocks: List[ShieldedBlock]) -> Tuple[int, int]:
        """
        Apply the contiguous run of blocks starting at lo.

        Returns:
            Tuple of (new notes, highest height applied without a gap)
        """
        by_height = {b.height: b for b in blocks if lo <= b.height <= hi}
        found = 0
        covered = lo - 1
        for height in range(lo, hi + 1):
            block = by_height.get(height)
            if block is None:
                break
            found += self.session.shielded.apply_block(block, self.viewing_keys)
            covered = height
        return found, covered


@contextmanager
def shutdown_signal(event: Optional[threading.Event] = None) -> Iterator[threading.Event]:
    """
    Set event on SIGINT or SIGTERM while the context is active.

    Signal handlers can only be installed from the main thread; elsewhere
    the event is yielded without handlers.
    """
    event = event or threading.Event()
    if threading.current_thread() is not threading.main_thread():
        yield event
        return

    def handler(signum, frame):
        logger.warning(f"Received signal {signum}, stopping after the current batch")
        event.set()

    previous = {sig: signal.signal(sig, handler) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield event
    finally:
        for sig, prev in previous.items():
            signal.signal(sig, prev)
