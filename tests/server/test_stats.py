"""Tests for the statistics roll-up and the block header store."""

from datetime import datetime, timedelta, timezone

import pytest

from glyphdex.lib.glyph import GlyphType
from glyphdex.lib.script import ContractType
from glyphdex.server.block_headers import BlockHeaderStore
from glyphdex.server.glyph_index import GlyphIndex
from glyphdex.server.models import BlockHeader, Glyph, TxO
from glyphdex.server.stats import StatsIndex

DATE = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _header(height, label='a'):
    return BlockHeader(hash=f'{label}{height:063x}', height=height,
                       timestamp=DATE + timedelta(minutes=height))


def _glyph(n, token_type, **fields):
    return Glyph(ref=f'{n:064x}00000000', token_type=token_type,
                 reveal_outpoint=f'{n:064x}:0', height=n, timestamp=DATE,
                 **fields)


@pytest.fixture
def headers(db):
    return BlockHeaderStore(db)


class TestBlockHeaders:

    def test_create_and_find(self, headers):
        headers.create(_header(1))
        assert headers.find_by_height(1).hash == _header(1).hash
        assert headers.exists(_header(1).hash)
        assert headers.latest().height == 1

    def test_competing_header_marks_reorg(self, headers):
        headers.create(_header(5, 'a'))
        headers.create(_header(5, 'b'))
        assert headers.find_by_hash(_header(5, 'a').hash).reorg
        assert headers.find_by_height(5).hash == _header(5, 'b').hash
        assert headers.count() == 1

    def test_find_all_newest_first(self, headers):
        for height in (1, 3, 2):
            headers.create(_header(height))
        assert [h.height for h in headers.find_all()] == [3, 2, 1]


class TestStats:

    def _populate(self, db):
        glyphs = GlyphIndex(db)
        glyphs.find_or_create(_glyph(1, GlyphType.NFT))
        glyphs.find_or_create(_glyph(2, GlyphType.FT))
        glyphs.find_or_create(_glyph(3, GlyphType.CONTAINER, is_container=True))
        glyphs.find_or_create(_glyph(4, GlyphType.USER))
        glyphs.find_or_create(_glyph(5, GlyphType.DAT))
        glyphs.add_to_container(_glyph(3, GlyphType.CONTAINER).ref,
                                _glyph(1, GlyphType.NFT).ref)
        for vout, contract_type in enumerate((ContractType.NFT, ContractType.FT,
                                              ContractType.FT, ContractType.RXD)):
            db.txos.insert(TxO(txid='aa' * 32, vout=vout, script='51', date=DATE,
                               height=1, contract_type=contract_type))
        BlockHeaderStore(db).create(_header(9))

    def test_compute(self, db, env):
        self._populate(db)
        stats = StatsIndex(db, env).compute()
        assert stats.glyphs.total == 5
        assert stats.glyphs.nft == 1
        assert stats.glyphs.containers == 1
        assert stats.glyphs.contained_items == 1
        assert stats.glyphs.users == 1
        assert stats.glyphs.dat == 1
        assert (stats.txos.total, stats.txos.rxd, stats.txos.nft, stats.txos.ft) == (4, 1, 1, 2)
        assert stats.blocks.count == 1
        assert stats.blocks.latest.height == 9

    def test_cached_within_ttl(self, db, env):
        index = StatsIndex(db, env)
        first = index.get()
        self._populate(db)
        assert index.get().glyphs.total == first.glyphs.total == 0

    def test_refresh_after_ttl(self, db, env):
        env.stats_ttl = 0
        index = StatsIndex(db, env)
        index.get()
        self._populate(db)
        assert index.get().glyphs.total == 5
        assert index.cached().glyphs.total == 5
