"""Batch import of new blocks from the node."""

from dataclasses import dataclass
from typing import Optional

from glyphdex.lib import util
from glyphdex.server.data_processor import DataProcessor
from glyphdex.server.import_state import ImportStateStore
from glyphdex.server.models import ImportState


class ImportAlreadyRunning(Exception):
    """An import run holds the importing flag."""


@dataclass
class ImportResult:
    chain_height: int
    start_height: int
    end_height: int
    imported: int = 0

    @property
    def caught_up(self) -> bool:
        return self.end_height >= self.chain_height

    @property
    def message(self) -> str:
        if not self.imported:
            return 'No new blocks to import'
        return f'Imported blocks {self.start_height} to {self.end_height}'


class BlockImporter:
    """Imports up to ``BATCH_SIZE`` blocks per run.

    The import position advances after every block, so an interrupted run
    loses at most the block in progress.  Reprocessing that block is
    harmless.
    """

    def __init__(self, processor: DataProcessor, state: ImportStateStore, env=None):
        self.logger = util.class_logger(__name__, self.__class__.__name__)
        self.processor = processor
        self.daemon = processor.daemon
        self.state = state
        self.batch_size = getattr(env, 'batch_size', 50)

    async def import_batch(self, reset_to_block: Optional[int] = None) -> ImportResult:
        """Run one batch.  Raises ImportAlreadyRunning if another run is active."""
        if not self.state.try_acquire():
            self.logger.warning('import is already running')
            raise ImportAlreadyRunning('import is already running')
        try:
            if reset_to_block is not None:
                self.state.rewind(reset_to_block)
            return await self._import_batch()
        finally:
            self.state.set_importing(False)

    async def _import_batch(self) -> ImportResult:
        chain_height = await self.daemon.getblockcount()
        last_height = self.state.get().last_block_height
        self.logger.info(f'chain height {chain_height:,d}, '
                         f'last imported {last_height:,d}')

        result = ImportResult(chain_height, last_height + 1, last_height)
        if last_height >= chain_height:
            self.logger.info(result.message)
            return result

        end_height = min(last_height + self.batch_size, chain_height)
        self.logger.info(f'importing blocks {result.start_height:,d} to '
                         f'{end_height:,d}')
        for height in range(result.start_height, end_height + 1):
            block = await self.processor.process_height(height)
            self.state.update_last_block(height, block.hash)
            result.end_height = height
            result.imported += 1
            self.logger.info(f'imported block {height:,d}/{end_height:,d}',
                             extra={'block_height': height})

        await self.processor.update_stats()
        self.logger.info(result.message)
        return result

    def reset(self, reset_flag: bool = False, height: Optional[int] = None,
              block_hash: Optional[str] = None) -> ImportState:
        """Operator reset: clear the importing flag and/or rewind the position."""
        state = self.state.get()
        if reset_flag:
            self.logger.warning('importing flag cleared by operator')
            state = self.state.set_importing(False)
        if height is not None:
            state = self.state.rewind(height, block_hash)
        return state
