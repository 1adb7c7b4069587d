"""Long-running driver for the block importer."""

import asyncio

from glyphdex.lib import util
from glyphdex.server.importer import BlockImporter, ImportAlreadyRunning


class ImportScheduler:
    """Runs import batches forever.

    Batches run back-to-back, ``SYNC_DELAY`` apart, until the import is
    within one block of the chain tip.  After that a run happens every
    ``POLL_INTERVAL`` seconds.  A failed run is retried after
    ``RETRY_DELAY`` seconds without changing the mode.
    """

    def __init__(self, importer: BlockImporter, env=None):
        self.logger = util.class_logger(__name__, self.__class__.__name__)
        self.importer = importer
        self.sync_delay = getattr(env, 'sync_delay', 5.0)
        self.poll_interval = getattr(env, 'poll_interval', 300.0)
        self.retry_delay = getattr(env, 'retry_delay', 60.0)
        self.initial_sync = True
        self._stopped = asyncio.Event()

    async def is_synced(self) -> bool:
        chain_height = await self.importer.daemon.getblockcount()
        last_height = self.importer.state.get().last_block_height
        return last_height >= chain_height - 1

    async def run_once(self) -> float:
        """Run one batch and return the delay before the next one."""
        try:
            try:
                result = await self.importer.import_batch()
            except ImportAlreadyRunning:
                self.logger.warning('another import run holds the lock')
                synced = await self.is_synced()
            else:
                synced = result.end_height >= result.chain_height - 1
        except Exception as e:
            self.logger.error(f'import run failed: {e!r}; retrying in '
                              f'{self.retry_delay}s')
            return self.retry_delay

        if self.initial_sync and synced:
            self.initial_sync = False
            self.logger.info(f'initial sync completed; polling every '
                             f'{self.poll_interval}s')
            return self.poll_interval
        if self.initial_sync:
            return self.sync_delay
        return self.poll_interval

    async def run_forever(self):
        self.logger.info('starting import scheduler in initial sync mode')
        while not self._stopped.is_set():
            delay = await self.run_once()
            self.logger.debug(f'next import in {delay}s')
            try:
                await asyncio.wait_for(self._stopped.wait(), delay)
            except asyncio.TimeoutError:
                pass
        self.logger.info('import scheduler stopped')

    def stop(self):
        self._stopped.set()

    @property
    def mode(self) -> str:
        return 'initial-sync' if self.initial_sync else 'polling'

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()
