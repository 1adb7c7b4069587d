"""
Validated shapes of the blocks and transactions returned by the node.

``getblock <hash> 2`` returns transactions with decoded inputs and outputs.
Only the fields the importer relies on are declared; anything else in the
node's JSON is ignored.  Malformed shapes are rejected here, at the RPC
boundary, as ChainDataError.
"""

import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from glyphdex.lib.outpoint import Outpoint

_HASH_RE = re.compile(r'^[0-9a-fA-F]{64}$')
_HEX_RE = re.compile(r'^(?:[0-9a-fA-F]{2})*$')


class ChainDataError(Exception):
    """Node data that violates an ingestion assumption."""


def _check_hash(value):
    if value is not None and not _HASH_RE.match(value):
        raise ValueError(f'not a 32-byte hex hash: {value!r}')
    return value.lower() if value is not None else None


def _check_hex(value):
    if not _HEX_RE.match(value):
        raise ValueError('not a hex string')
    return value.lower()


class _NodeModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra='ignore',
                              frozen=True)


class ScriptSig(_NodeModel):
    asm: str = ''
    hex: str = ''

    check_hex = field_validator('hex')(_check_hex)


class ScriptPubKey(_NodeModel):
    asm: str = ''
    hex: str = ''
    type: Optional[str] = None

    check_hex = field_validator('hex')(_check_hex)


class TxInput(_NodeModel):
    txid: Optional[str] = None
    vout: Optional[int] = Field(default=None, ge=0)
    coinbase: Optional[str] = None
    script_sig: Optional[ScriptSig] = Field(default=None, alias='scriptSig')
    sequence: Optional[int] = None

    check_txid = field_validator('txid')(_check_hash)

    @property
    def is_coinbase(self) -> bool:
        return self.coinbase is not None or self.txid is None

    @property
    def script(self) -> bytes:
        if self.script_sig is None:
            return b''
        return bytes.fromhex(self.script_sig.hex)

    @property
    def outpoint(self) -> Optional[Outpoint]:
        if self.is_coinbase or self.vout is None:
            return None
        return Outpoint(self.txid, self.vout)


class TxOutput(_NodeModel):
    value: float = 0
    n: int = Field(ge=0)
    script_pub_key: ScriptPubKey = Field(alias='scriptPubKey')

    @property
    def script_hex(self) -> str:
        return self.script_pub_key.hex

    @property
    def script(self) -> bytes:
        return bytes.fromhex(self.script_pub_key.hex)


class Tx(_NodeModel):
    txid: str
    hex: Optional[str] = None
    vin: List[TxInput] = Field(default_factory=list)
    vout: List[TxOutput] = Field(default_factory=list)

    check_txid = field_validator('txid')(_check_hash)

    @property
    def inputs(self) -> List[TxInput]:
        return self.vin

    @property
    def outputs(self) -> List[TxOutput]:
        return self.vout

    @property
    def is_coinbase(self) -> bool:
        return bool(self.vin) and self.vin[0].is_coinbase


class Block(_NodeModel):
    hash: str
    height: int = Field(ge=0)
    time: int
    previousblockhash: Optional[str] = None
    tx: List[Tx] = Field(default_factory=list)

    check_hashes = field_validator('hash', 'previousblockhash')(_check_hash)


def parse_block(data: Dict[str, Any]) -> Block:
    """Validate a verbose ``getblock`` result."""
    if not isinstance(data, dict):
        raise ChainDataError(f'block must be a JSON object, got '
                             f'{type(data).__name__}')
    try:
        return Block.model_validate(data)
    except ValidationError as e:
        raise ChainDataError(f'malformed block {data.get("hash")}: {e}') from e


def parse_tx(data: Dict[str, Any]) -> Tx:
    """Validate a verbose transaction object."""
    if not isinstance(data, dict):
        raise ChainDataError(f'transaction must be a JSON object, got '
                             f'{type(data).__name__}')
    try:
        return Tx.model_validate(data)
    except ValidationError as e:
        raise ChainDataError(f'malformed transaction {data.get("txid")}: '
                             f'{e}') from e
