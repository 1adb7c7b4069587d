"""
Pytest configuration for glyphdex tests.

Provides an in-memory DB, script and transaction builders, and a fake node
that serves a scripted chain.
"""

import struct
from typing import Dict, List, Optional

import cbor2
import pytest

from glyphdex.lib.hash import hash_to_hex_str, sha256
from glyphdex.lib.outpoint import Outpoint
from glyphdex.lib.tx import Block, parse_block
from glyphdex.server.db import DB
from glyphdex.server.storage import Memory

BLOCK_TIME = 1700000000


# =============================================================================
# Hashes and scripts
# =============================================================================

def make_hash(label) -> str:
    """Deterministic display-hex hash for a label."""
    return hash_to_hex_str(sha256(str(label).encode()))


def push(data: bytes) -> bytes:
    if len(data) < 0x4c:
        return bytes([len(data)]) + data
    if len(data) <= 0xff:
        return b'\x4c' + bytes([len(data)]) + data
    return b'\x4d' + struct.pack('<H', len(data)) + data


def p2pkh_script(address: str = 'ab' * 20) -> str:
    return f'76a914{address}88ac'


def nft_script(ref: str, address: str = 'ab' * 20) -> str:
    """NFT holder script for a big-endian ``ref``."""
    return f'd8{Outpoint.from_ref(ref).ref_le()}7576a914{address}88ac'


def ft_script(ref: str, address: str = 'cd' * 20) -> str:
    return (f'76a914{address}88acbdd0{Outpoint.from_ref(ref).ref_le()}'
            f'dec0e9aa76e378e4a269e69d')


def delegate_burn_script(ref: str) -> str:
    return f'd1{Outpoint.from_ref(ref).ref_le()}6a0364656c'


def reveal_script_sig(payload: dict) -> str:
    """Unlocking script carrying a Glyph reveal payload."""
    script = (push(b'\x30' * 71) + push(b'\x02' * 33) + push(b'gly')
              + push(cbor2.dumps(payload)))
    return script.hex()


def signature_script_sig() -> str:
    return (push(b'\x30' * 71) + push(b'\x02' * 33)).hex()


# =============================================================================
# Transactions and blocks
# =============================================================================

def vin(txid: str, vout: int, script_sig: str = '') -> dict:
    if not script_sig:
        script_sig = signature_script_sig()
    return {'txid': txid, 'vout': vout,
            'scriptSig': {'asm': '', 'hex': script_sig}, 'sequence': 4294967295}


def coinbase_vin() -> dict:
    return {'coinbase': '03abcdef', 'sequence': 4294967295}


def vout(n: int, script_hex: str, value: float = 0.0001, asm: str = '') -> dict:
    return {'value': value, 'n': n,
            'scriptPubKey': {'asm': asm, 'hex': script_hex}}


def make_tx(label, inputs: List[dict], outputs: List[dict]) -> dict:
    return {'txid': make_hash(f'tx-{label}'), 'hex': '', 'vin': inputs,
            'vout': outputs}


def make_block(height: int, txs: List[dict], block_hash: Optional[str] = None) -> dict:
    return {
        'hash': block_hash or make_hash(f'block-{height}'),
        'height': height,
        'time': BLOCK_TIME + height * 600,
        'previousblockhash': make_hash(f'block-{height - 1}'),
        'tx': txs,
    }


class FakeDaemon:
    """Serves blocks from memory in place of a node."""

    def __init__(self, blocks: Optional[List[dict]] = None, height: Optional[int] = None):
        self.blocks: Dict[int, dict] = {}
        self.fail_at = set()
        self.calls: List = []
        for block in blocks or ():
            self.add_block(block)
        self.height = height if height is not None else max(self.blocks, default=0)

    def add_block(self, block: dict):
        self.blocks[block['height']] = block
        self.height = max(getattr(self, 'height', 0), block['height'])

    async def getblockcount(self) -> int:
        self.calls.append(('getblockcount',))
        return self.height

    async def get_block(self, height: int) -> Block:
        self.calls.append(('get_block', height))
        if height in self.fail_at:
            raise RuntimeError(f'node failure at block {height}')
        if height not in self.blocks:
            self.blocks[height] = make_block(height, [coinbase_tx(height)])
        return parse_block(self.blocks[height])

    async def getblock_hex(self, block_hash: str) -> str:
        self.calls.append(('getblock_hex', block_hash))
        return '00' * 80

    async def close(self):
        pass


def coinbase_tx(height: int) -> dict:
    return make_tx(f'coinbase-{height}', [coinbase_vin()],
                   [vout(0, p2pkh_script(), 50.0)])


# =============================================================================
# Fixtures
# =============================================================================

class FakeEnv:
    batch_size = 10
    genesis_height = 100
    genesis_hash = '00' * 32
    index_rxd = False
    sync_delay = 5.0
    poll_interval = 300.0
    retry_delay = 60.0
    stats_ttl = 60.0
    log_to_db = False
    admin_api_key = ''
    admin_host = '127.0.0.1'
    admin_port = None


@pytest.fixture
def env():
    return FakeEnv()


@pytest.fixture
def db():
    db = DB(storage=Memory())
    yield db
    db.close()
