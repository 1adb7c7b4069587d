"""
Importer and Import State Tests

Batches against a fake node: progress tracking, the importing flag and
operator resets.
"""

import asyncio

import pytest

from glyphdex.server.data_processor import DataProcessor
from glyphdex.server.import_state import ImportStateStore
from glyphdex.server.importer import BlockImporter, ImportAlreadyRunning

from conftest import FakeDaemon, make_hash


@pytest.fixture
def daemon():
    return FakeDaemon(height=100)


@pytest.fixture
def state(db, env):
    return ImportStateStore(db, env)


@pytest.fixture
def importer(db, daemon, env, state):
    return BlockImporter(DataProcessor(db, daemon, env), state, env)


class TestImportState:

    def test_created_at_genesis(self, state):
        current = state.get()
        assert current.last_block_height == 100
        assert current.last_block_hash == '00' * 32
        assert not current.is_importing

    def test_try_acquire(self, state):
        assert state.try_acquire()
        assert not state.try_acquire()
        state.set_importing(False)
        assert state.try_acquire()

    def test_rewind(self, state):
        state.update_last_block(150, 'ab' * 32)
        assert state.rewind(120).last_block_height == 120
        with pytest.raises(ValueError):
            state.rewind(-1)

    def test_last_updated_moves(self, state):
        before = state.get().last_updated
        assert state.update_last_block(101, 'ab' * 32).last_updated >= before


class TestImportBatch:

    def test_no_new_blocks(self, importer, state):
        result = asyncio.run(importer.import_batch())
        assert result.message == 'No new blocks to import'
        assert result.imported == 0
        assert result.caught_up
        assert state.get().last_block_height == 100
        assert not state.get().is_importing

    def test_imports_up_to_batch_size(self, importer, daemon, state):
        daemon.height = 125
        result = asyncio.run(importer.import_batch())
        assert result.message == 'Imported blocks 101 to 110'
        assert result.imported == 10
        assert not result.caught_up
        current = state.get()
        assert current.last_block_height == 110
        assert current.last_block_hash == make_hash('block-110')
        assert not current.is_importing

    def test_stops_at_chain_tip(self, importer, daemon, state):
        daemon.height = 103
        result = asyncio.run(importer.import_batch())
        assert result.end_height == 103
        assert result.caught_up
        assert state.get().last_block_height == 103

    def test_failure_keeps_progress(self, importer, daemon, state):
        """A failure at block 105 leaves the position at 104."""
        daemon.height = 110
        daemon.fail_at.add(105)
        with pytest.raises(RuntimeError):
            asyncio.run(importer.import_batch())
        current = state.get()
        assert current.last_block_height == 104
        assert current.last_block_hash == make_hash('block-104')
        assert not current.is_importing

        daemon.fail_at.clear()
        result = asyncio.run(importer.import_batch())
        assert result.start_height == 105
        assert state.get().last_block_height == 110

    def test_already_running(self, importer, daemon, state):
        daemon.height = 110
        state.try_acquire()
        with pytest.raises(ImportAlreadyRunning):
            asyncio.run(importer.import_batch())
        assert state.get().last_block_height == 100
        assert state.get().is_importing
        assert ('get_block', 101) not in daemon.calls

    def test_reset_to_block(self, importer, daemon, state):
        daemon.height = 110
        asyncio.run(importer.import_batch())
        result = asyncio.run(importer.import_batch(reset_to_block=105))
        assert result.start_height == 106
        assert state.get().last_block_height == 110


class TestReset:

    def test_reset_flag(self, importer, state):
        state.try_acquire()
        assert not importer.reset(reset_flag=True).is_importing

    def test_reset_height(self, importer, state):
        current = importer.reset(height=200, block_hash='cd' * 32)
        assert current.last_block_height == 200
        assert current.last_block_hash == 'cd' * 32

    def test_reset_nothing(self, importer, state):
        assert importer.reset() == state.get()
