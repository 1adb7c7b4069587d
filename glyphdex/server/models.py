"""
Persisted document types.

Field names are snake_case in Python and in storage; the admin API renders
them in camelCase (``tokenType``, ``revealOutpoint``, ...).
"""

from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from glyphdex.lib.glyph import UNKNOWN, GlyphType
from glyphdex.lib.outpoint import format_outpoint
from glyphdex.lib.script import ContractType
from glyphdex.lib.util import utcnow


def _plain(value):
    if isinstance(value, bytes):
        return value.hex()
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


class Document(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True,
                              use_enum_values=True, validate_default=True)

    def to_api(self) -> Dict[str, Any]:
        """JSON-ready dict with camelCase keys; bytes are rendered as hex."""
        return _plain(self.model_dump(by_alias=True))


class LogLevel(str, Enum):
    ERROR = 'error'
    WARN = 'warn'
    INFO = 'info'
    DEBUG = 'debug'


class BlockHeader(Document):
    hash: str
    height: int
    timestamp: datetime
    buffer: bytes = b''
    reorg: bool = False


class TxO(Document):
    txid: str
    vout: int
    script: str
    value: float = 0
    date: datetime
    height: int
    spent: int = 0
    change: Optional[int] = None
    contract_type: ContractType

    @property
    def id(self) -> str:
        return format_outpoint(self.txid, self.vout)


class EmbedFile(Document):
    t: str
    b: bytes


class RemoteFileRef(Document):
    u: str
    t: str = ''
    h: Optional[bytes] = None
    hs: Optional[bytes] = None


class Glyph(Document):
    """A token entity, keyed by the reference of its minting input."""
    ref: str
    token_type: GlyphType
    p: List[Any] = Field(default_factory=list)
    type: str = 'object'
    name: str = 'Unnamed Glyph'
    description: str = ''
    author: str = UNKNOWN
    container: str = UNKNOWN
    is_container: bool = False
    container_items: List[str] = Field(default_factory=list)
    attrs: Dict[str, Any] = Field(default_factory=dict)
    embed: Optional[EmbedFile] = None
    remote: Optional[RemoteFileRef] = None
    ticker: Optional[str] = None
    immutable: bool = True
    location: Optional[str] = None
    reveal_outpoint: str
    last_txo_id: Optional[str] = None
    height: int
    timestamp: datetime
    spent: int = 0
    fresh: int = 1


class ImportState(Document):
    KEY: ClassVar[str] = 'importstate'

    last_block_height: int
    last_block_hash: str
    last_updated: datetime = Field(default_factory=utcnow)
    is_importing: bool = False


class GlyphCounts(Document):
    total: int = 0
    nft: int = 0
    ft: int = 0
    dat: int = 0
    containers: int = 0
    contained_items: int = 0
    users: int = 0


class TxOCounts(Document):
    total: int = 0
    rxd: int = 0
    nft: int = 0
    ft: int = 0


class LatestBlock(Document):
    hash: str
    height: int
    timestamp: datetime


class BlockCounts(Document):
    count: int = 0
    latest: Optional[LatestBlock] = None


class Stats(Document):
    KEY: ClassVar[str] = 'stats'

    glyphs: GlyphCounts = Field(default_factory=GlyphCounts)
    txos: TxOCounts = Field(default_factory=TxOCounts)
    blocks: BlockCounts = Field(default_factory=BlockCounts)
    last_updated: datetime = Field(default_factory=utcnow)


class ImportLog(Document):
    id: str
    timestamp: datetime = Field(default_factory=utcnow)
    level: LogLevel = LogLevel.INFO
    message: str
    details: Optional[Any] = None
    block_height: Optional[int] = None
    txid: Optional[str] = None
