"""Import progress and the importer's mutual-exclusion flag."""

from typing import Optional

from glyphdex.lib import util
from glyphdex.server.db import DB
from glyphdex.server.env import DEFAULT_GENESIS_HASH, DEFAULT_GENESIS_HEIGHT
from glyphdex.server.models import ImportState


class ImportStateStore:
    """The singleton ImportState document.

    ``is_importing`` is an advisory lease kept in the database, so it also
    holds between separate processes sharing the store.  A process that dies
    mid-run leaves it set until an operator resets it.
    """

    def __init__(self, db: DB, env=None):
        self.logger = util.class_logger(__name__, self.__class__.__name__)
        self.states = db.importstate
        self.genesis_height = getattr(env, 'genesis_height', DEFAULT_GENESIS_HEIGHT)
        self.genesis_hash = getattr(env, 'genesis_hash', DEFAULT_GENESIS_HASH)

    def get(self) -> ImportState:
        """Current state, created at the genesis height on first access."""
        state = self.states.get(ImportState.KEY)
        if state is None:
            state = ImportState(last_block_height=self.genesis_height,
                                last_block_hash=self.genesis_hash)
            self.states.insert(state)
            self.logger.info(f'initialised import state at height '
                             f'{self.genesis_height}')
        return state

    def _update(self, **fields) -> ImportState:
        self.get()
        return self.states.update(ImportState.KEY, last_updated=util.utcnow(),
                                  **fields)

    def try_acquire(self) -> bool:
        """Set ``is_importing`` unless it is already set."""
        if self.get().is_importing:
            return False
        self._update(is_importing=True)
        return True

    def set_importing(self, is_importing: bool) -> ImportState:
        return self._update(is_importing=is_importing)

    def update_last_block(self, height: int, block_hash: str) -> ImportState:
        return self._update(last_block_height=height, last_block_hash=block_hash)

    def rewind(self, height: int, block_hash: Optional[str] = None) -> ImportState:
        """Move the import position so later runs reimport from ``height + 1``."""
        if height < 0:
            raise ValueError(f'cannot rewind to negative height {height}')
        block_hash = block_hash or self.genesis_hash
        self.logger.info(f'import position reset to {height}')
        return self._update(last_block_height=height, last_block_hash=block_hash)
