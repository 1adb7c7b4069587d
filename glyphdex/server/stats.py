"""
Statistics roll-up for the Glyph index.

Counts are recomputed wholesale from the authoritative collections and
stored as a single Stats document.  Reads reuse the stored document while it
is younger than ``STATS_TTL`` seconds.
"""

from datetime import timedelta
from typing import Optional

from glyphdex.lib import util
from glyphdex.lib.glyph import GlyphType
from glyphdex.lib.script import ContractType
from glyphdex.server.block_headers import BlockHeaderStore
from glyphdex.server.db import DB
from glyphdex.server.glyph_index import GlyphIndex
from glyphdex.server.models import (BlockCounts, GlyphCounts, LatestBlock,
                                    Stats, TxOCounts)
from glyphdex.server.txo_index import TxOIndex


class StatsIndex:
    """Computes and caches the Stats document."""

    def __init__(self, db: DB, env=None):
        self.logger = util.class_logger(__name__, self.__class__.__name__)
        self.stats = db.stats
        self.headers = BlockHeaderStore(db)
        self.glyphs = GlyphIndex(db)
        self.txos = TxOIndex(db)
        self.ttl = getattr(env, 'stats_ttl', 60.0)

    def compute(self) -> Stats:
        nft = self.glyphs.count_by_token_type(GlyphType.NFT)
        ft = self.glyphs.count_by_token_type(GlyphType.FT)
        dat = self.glyphs.count_by_token_type(GlyphType.DAT)
        users = self.glyphs.count_by_token_type(GlyphType.USER)
        containers = self.glyphs.count_containers()
        glyphs = GlyphCounts(
            total=nft + ft + dat + containers + users,
            nft=nft, ft=ft, dat=dat, containers=containers,
            contained_items=self.glyphs.count_contained_items(),
            users=users,
        )

        rxd = self.txos.count_by_contract_type(ContractType.RXD)
        nft_txos = self.txos.count_by_contract_type(ContractType.NFT)
        ft_txos = self.txos.count_by_contract_type(ContractType.FT)
        txos = TxOCounts(total=rxd + nft_txos + ft_txos,
                         rxd=rxd, nft=nft_txos, ft=ft_txos)

        latest = self.headers.latest()
        blocks = BlockCounts(
            count=self.headers.count(),
            latest=LatestBlock(hash=latest.hash, height=latest.height,
                               timestamp=latest.timestamp) if latest else None,
        )
        return Stats(glyphs=glyphs, txos=txos, blocks=blocks,
                     last_updated=util.utcnow())

    def refresh(self) -> Stats:
        """Recompute and store the roll-up."""
        stats = self.compute()
        self.stats.save(stats)
        return stats

    def cached(self) -> Optional[Stats]:
        return self.stats.get(Stats.KEY)

    def get(self) -> Stats:
        """The stored roll-up if still fresh, otherwise a new one."""
        stats = self.cached()
        if stats is not None and \
                util.utcnow() - stats.last_updated < timedelta(seconds=self.ttl):
            return stats
        return self.refresh()
