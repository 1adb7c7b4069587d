"""
Glyph Token Payload Support

Decodes the Glyph reveal envelope carried in a redeeming input script:

    ... OP_PUSHBYTES_3 'gly' <push>(CBOR map) ...

The CBOR map is split into the protocol list ``p``, embedded files
(``{t: str, b: bytes}``), remote files (``{u: str, h?: bytes, hs?: bytes}``)
and plain metadata.  Anything that does not decode is simply "not a glyph".

Reference: https://github.com/Radiant-Core/Glyph-Token-Standards
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import cbor2

from glyphdex.lib.outpoint import Outpoint
from glyphdex.lib.script import ScriptChunk, ScriptError, parse_script

# Glyph magic bytes
GLYPH_MAGIC = b'gly'


# Protocol IDs
class GlyphProtocol:
    GLYPH_FT = 1         # Fungible Token
    GLYPH_NFT = 2        # Non-Fungible Token
    GLYPH_DAT = 3        # Data Storage
    GLYPH_DMINT = 4      # Decentralized Minting
    GLYPH_MUT = 5        # Mutable State


# Textual protocol markers seen in older payloads
PROTOCOL_ALIASES = {
    'ft': GlyphProtocol.GLYPH_FT,
    'nft': GlyphProtocol.GLYPH_NFT,
    'dat': GlyphProtocol.GLYPH_DAT,
    'dmint': GlyphProtocol.GLYPH_DMINT,
    'mut': GlyphProtocol.GLYPH_MUT,
    'mutable': GlyphProtocol.GLYPH_MUT,
}


class GlyphType(str, Enum):
    """Token type of an indexed Glyph."""
    NFT = 'NFT'
    FT = 'FT'
    DAT = 'DAT'
    CONTAINER = 'CONTAINER'
    USER = 'USER'


UNKNOWN = 'Unknown'


@dataclass(frozen=True)
class EmbeddedFile:
    t: str
    b: bytes


@dataclass(frozen=True)
class RemoteFile:
    u: str
    t: str = ''
    h: Optional[bytes] = None
    hs: Optional[bytes] = None


@dataclass
class DecodedGlyph:
    """A decoded reveal payload.

    ``payload`` holds only the keys present in the CBOR map (other than
    files); ``p`` is filtered to strings and numbers and ``attrs`` coerced to
    a dict when present.
    """
    payload: Dict[str, Any] = field(default_factory=dict)
    embedded_files: Dict[str, EmbeddedFile] = field(default_factory=dict)
    remote_files: Dict[str, RemoteFile] = field(default_factory=dict)

    @property
    def protocols(self) -> List[Any]:
        return self.payload.get('p', [])

    @property
    def attrs(self) -> Dict[str, Any]:
        return self.payload.get('attrs', {})

    @property
    def loc(self) -> Optional[int]:
        loc = self.payload.get('loc')
        if isinstance(loc, int) and not isinstance(loc, bool) and loc >= 0:
            return loc
        return None

    def merged(self, other: 'DecodedGlyph') -> 'DecodedGlyph':
        """Shallow-merge ``other`` on top of this payload and its files."""
        return DecodedGlyph(
            payload={**self.payload, **other.payload},
            embedded_files={**self.embedded_files, **other.embedded_files},
            remote_files={**self.remote_files, **other.remote_files},
        )


def contains_glyph_magic(data: bytes) -> bool:
    """Check if data contains Glyph magic bytes."""
    return GLYPH_MAGIC in data


def _filter_file(value: Any) -> Tuple[Optional[EmbeddedFile], Optional[RemoteFile]]:
    if not isinstance(value, dict):
        return None, None
    t = value.get('t')
    b = value.get('b')
    if isinstance(t, str) and isinstance(b, bytes):
        return EmbeddedFile(t=t, b=b), None
    u = value.get('u')
    h = value.get('h')
    hs = value.get('hs')
    if (isinstance(u, str)
            and (h is None or isinstance(h, bytes))
            and (hs is None or isinstance(hs, bytes))):
        return None, RemoteFile(u=u, t=t if isinstance(t, str) else '',
                                h=h, hs=hs)
    return None, None


def split_payload(decoded: Dict[Any, Any]) -> DecodedGlyph:
    """Partition a decoded CBOR map into metadata and files."""
    result = DecodedGlyph()
    for key, value in decoded.items():
        if not isinstance(key, str):
            continue
        if key == 'p':
            result.payload['p'] = (
                [v for v in value
                 if isinstance(v, (str, int, float)) and not isinstance(v, bool)]
                if isinstance(value, list) else [])
            continue
        if key == 'attrs':
            result.payload['attrs'] = value if isinstance(value, dict) else {}
            continue
        embed, remote = _filter_file(value)
        if embed is not None:
            result.embedded_files[key] = embed
        elif remote is not None:
            result.remote_files[key] = remote
        else:
            result.payload[key] = value
    return result


def decode_cbor_metadata(data: bytes) -> Optional[Dict[Any, Any]]:
    """Decode raw CBOR bytes into a map.

    Returns None if data is invalid CBOR or not a map.
    """
    try:
        result = cbor2.loads(data)
    except (cbor2.CBORDecodeError, ValueError, TypeError, EOFError):
        return None
    if not isinstance(result, dict):
        return None
    return result


def decode_glyph(chunks: Sequence[ScriptChunk]) -> Optional[DecodedGlyph]:
    """Find and decode a Glyph payload in a parsed script.

    The magic must be its own 3-byte push and the next chunk must be a push
    holding a CBOR map.
    """
    for index, chunk in enumerate(chunks):
        if chunk.data != GLYPH_MAGIC or chunk.opcode != len(GLYPH_MAGIC):
            continue
        if index + 1 >= len(chunks):
            continue
        payload = chunks[index + 1].data
        if not payload:
            continue
        decoded = decode_cbor_metadata(payload)
        if decoded is None:
            continue
        return split_payload(decoded)
    return None


def decode_glyph_script(script: bytes) -> Optional[DecodedGlyph]:
    """Decode a Glyph payload from raw script bytes."""
    if not script or GLYPH_MAGIC not in script:
        return None
    try:
        chunks = parse_script(script)
    except ScriptError:
        return None
    return decode_glyph(chunks)


def extract_reveal_payload(ref: str, inputs: Iterable) -> Tuple[int, Optional[DecodedGlyph]]:
    """Find the input spending ``ref`` and decode its script.

    ``ref`` is a big-endian reference; inputs expose ``txid``, ``vout`` and
    ``script``.  Returns (input index, glyph) or (-1, None).
    """
    outpoint = Outpoint.from_ref(ref)
    for index, txin in enumerate(inputs):
        if txin.txid == outpoint.txid and txin.vout == outpoint.vout:
            if not txin.script:
                return -1, None
            return index, decode_glyph_script(txin.script)
    return -1, None


def normalize_protocols(protocols: Iterable) -> List[int]:
    """Map protocol markers, numeric or textual, to protocol IDs."""
    result = []
    for marker in protocols:
        if isinstance(marker, str):
            pid = PROTOCOL_ALIASES.get(marker.strip().lower())
            if pid is None and marker.isdigit():
                pid = int(marker)
        elif isinstance(marker, int) and not isinstance(marker, bool):
            pid = marker
        else:
            pid = None
        if pid is not None:
            result.append(pid)
    return result


def contract_family(protocols: Iterable) -> Optional[str]:
    """'ft', 'nft' or 'dat' as implied by the protocol list."""
    pids = normalize_protocols(protocols)
    if GlyphProtocol.GLYPH_FT in pids:
        return 'ft'
    if GlyphProtocol.GLYPH_NFT in pids:
        return 'nft'
    if GlyphProtocol.GLYPH_DAT in pids:
        return 'dat'
    return None


def is_immutable(protocols: Iterable) -> bool:
    """Mutable tokens must be NFTs that implement the mutable contract."""
    pids = normalize_protocols(protocols)
    return not (GlyphProtocol.GLYPH_NFT in pids
                and GlyphProtocol.GLYPH_MUT in pids)


def filter_attrs(attrs: Dict[Any, Any]) -> Dict[str, Any]:
    """Keep short scalar attributes."""
    return {
        key: value for key, value in attrs.items()
        if isinstance(key, str)
        and isinstance(value, (str, int, float, bool))
        and len(str(value)) < 100
    }


def ref_from_payload_field(value: Any) -> Optional[str]:
    """Big-endian reference from a payload ``in``/``by`` list.

    The list holds little-endian references as byte strings; the first
    well-formed one is used.
    """
    if not isinstance(value, list) or not value:
        return None
    first = value[0]
    if not isinstance(first, bytes) or len(first) != 36:
        return None
    return Outpoint.from_bytes(first).ref()
