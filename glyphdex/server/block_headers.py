"""Block header store."""

from typing import List, Optional

from glyphdex.lib import util
from glyphdex.server.db import DB
from glyphdex.server.models import BlockHeader


class BlockHeaderStore:
    """Headers as first seen, one per block hash.

    ``reorg`` is the only field that changes after creation.
    """

    def __init__(self, db: DB):
        self.logger = util.class_logger(__name__, self.__class__.__name__)
        self.headers = db.blockheaders

    def find_by_hash(self, block_hash: str) -> Optional[BlockHeader]:
        return self.headers.get(block_hash)

    def find_by_height(self, height: int) -> Optional[BlockHeader]:
        """The canonical header at ``height``, if any."""
        return self.headers.find_one({'height': height, 'reorg': False})

    def find_all(self, limit: int = 100, skip: int = 0) -> List[BlockHeader]:
        return self.headers.find(sort=[('height', -1)], skip=skip, limit=limit)

    def exists(self, block_hash: str) -> bool:
        return self.headers.exists(block_hash)

    def create(self, header: BlockHeader) -> BlockHeader:
        """Store a new header.  Any other non-reorg header at the same height
        is superseded and marked as reorged."""
        for stale in self.headers.find({'height': header.height, 'reorg': False}):
            if stale.hash != header.hash:
                self.logger.warning(f'block {stale.hash} at height {stale.height} '
                                    f'superseded by {header.hash}')
                self.mark_reorg(stale.hash)
        return self.headers.insert(header)

    def mark_reorg(self, block_hash: str) -> Optional[BlockHeader]:
        return self.headers.update(block_hash, reorg=True)

    def latest(self) -> Optional[BlockHeader]:
        return self.headers.find_one({'reorg': False}, sort=[('height', -1)])

    def count(self) -> int:
        return self.headers.count({'reorg': False})
