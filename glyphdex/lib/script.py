"""
Script parsing and contract classification for Radiant output scripts.

Radiant extends the Bitcoin script language with reference opcodes
(0xd0-0xd3, 0xd8) that carry a 36-byte little-endian outpoint inline.
Token holder scripts are fixed templates around those opcodes, so an output
is classified by its exact byte length first and then confirmed against the
template.  Classification never consults chain state.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, NamedTuple, Optional, Tuple


class ScriptError(Exception):
    """Raised when a script cannot be split into chunks."""


class OpCodes:
    OP_0 = 0x00
    OP_PUSHDATA1 = 0x4c
    OP_PUSHDATA2 = 0x4d
    OP_PUSHDATA4 = 0x4e
    OP_1NEGATE = 0x4f
    OP_1 = 0x51
    OP_16 = 0x60
    OP_RETURN = 0x6a
    OP_DROP = 0x75
    OP_DUP = 0x76
    OP_EQUALVERIFY = 0x88
    OP_HASH160 = 0xa9
    OP_CHECKSIG = 0xac
    OP_STATESEPARATOR = 0xbd
    OP_PUSHINPUTREF = 0xd0
    OP_REQUIREINPUTREF = 0xd1
    OP_DISALLOWPUSHINPUTREF = 0xd2
    OP_DISALLOWPUSHINPUTREFSIBLING = 0xd3
    OP_PUSHINPUTREFSINGLETON = 0xd8


# Opcodes followed by a 36-byte inline reference
REF_OPCODES = frozenset((
    OpCodes.OP_PUSHINPUTREF,
    OpCodes.OP_REQUIREINPUTREF,
    OpCodes.OP_DISALLOWPUSHINPUTREF,
    OpCodes.OP_DISALLOWPUSHINPUTREFSIBLING,
    OpCodes.OP_PUSHINPUTREFSINGLETON,
))
REF_LEN = 36

# Glyph magic bytes 'gly', embedded in the mutable contract template
GLYPH_MAGIC_HEX = '676c79'


class ScriptChunk(NamedTuple):
    """One parsed script element.  ``data`` is None for plain opcodes."""
    opcode: int
    data: Optional[bytes] = None


def parse_script(script: bytes) -> List[ScriptChunk]:
    """Split raw script bytes into opcode/push-data chunks.

    Raises ScriptError if a push or inline reference runs past the end.
    """
    chunks = []
    pos = 0
    length = len(script)
    while pos < length:
        op = script[pos]
        pos += 1
        if OpCodes.OP_0 < op < OpCodes.OP_PUSHDATA1:
            dlen = op
        elif op == OpCodes.OP_PUSHDATA1:
            if pos + 1 > length:
                raise ScriptError('truncated OP_PUSHDATA1')
            dlen = script[pos]
            pos += 1
        elif op == OpCodes.OP_PUSHDATA2:
            if pos + 2 > length:
                raise ScriptError('truncated OP_PUSHDATA2')
            dlen = int.from_bytes(script[pos:pos + 2], 'little')
            pos += 2
        elif op == OpCodes.OP_PUSHDATA4:
            if pos + 4 > length:
                raise ScriptError('truncated OP_PUSHDATA4')
            dlen = int.from_bytes(script[pos:pos + 4], 'little')
            pos += 4
        elif op in REF_OPCODES:
            dlen = REF_LEN
        else:
            chunks.append(ScriptChunk(op))
            continue
        end = pos + dlen
        if end > length:
            raise ScriptError(f'push of {dlen} bytes at offset {pos} '
                              f'exceeds script length {length}')
        chunks.append(ScriptChunk(op, script[pos:end]))
        pos = end
    return chunks


def has_singleton_ref(script: bytes) -> bool:
    """True if the script asserts a singleton reference.

    A script that cannot be parsed carries no marker.
    """
    try:
        chunks = parse_script(script)
    except ScriptError:
        return False
    return any(chunk.opcode == OpCodes.OP_PUSHINPUTREFSINGLETON
               for chunk in chunks)


# ----------------------------------------------------------------------
# Contract classification
# ----------------------------------------------------------------------

class ContractType(str, Enum):
    RXD = 'RXD'
    NFT = 'NFT'
    FT = 'FT'
    CONTAINER = 'CONTAINER'
    USER = 'USER'
    DELEGATE_BURN = 'DELEGATE_BURN'
    DELEGATE_TOKEN = 'DELEGATE_TOKEN'


GLYPH_CONTRACT_TYPES = frozenset((
    ContractType.NFT,
    ContractType.FT,
    ContractType.DELEGATE_BURN,
    ContractType.DELEGATE_TOKEN,
))
DELEGATE_CONTRACT_TYPES = frozenset((
    ContractType.DELEGATE_BURN,
    ContractType.DELEGATE_TOKEN,
))


@dataclass(frozen=True)
class ScriptMatch:
    """Result of classifying an output script.

    ``ref`` and ``refs`` are little-endian reference hex as found in the
    script; ``address`` is the 20-byte public-key hash in hex.
    """
    kind: str
    contract_type: ContractType
    ref: Optional[str] = None
    refs: Tuple[str, ...] = ()
    address: Optional[str] = None
    hash: Optional[str] = None


P2PKH_SCRIPT_SIZE = 25
NFT_SCRIPT_SIZE = 63
FT_SCRIPT_SIZE = 75
DELEGATE_TOKEN_SCRIPT_SIZE = 63
DELEGATE_BURN_SCRIPT_SIZE = 42

_P2PKH_RE = re.compile(r'^76a914([0-9a-f]{40})88ac$')
_NFT_RE = re.compile(r'^d8([0-9a-f]{72})7576a914([0-9a-f]{40})88ac$')
_FT_RE = re.compile(
    r'^76a914([0-9a-f]{40})88acbdd0([0-9a-f]{72})dec0e9aa76e378e4a269e69d$')
_DELEGATE_BURN_RE = re.compile(r'^d1([0-9a-f]{72})6a0364656c$')
_DELEGATE_BASE_RE = re.compile(r'^((?:d1[0-9a-f]{72}75)+)')
_MUTABLE_NFT_TEMPLATE = (
    '20([0-9a-f]{64})75bdd8([0-9a-f]{72})'
    '7601207f818c54807e5279e2547a0124957f7701247f75887cec7b7f7701457f75'
    '7801207ec0caa87e885279036d6f64876378eac0e98878ec01205579aa7e01757e'
    '8867527902736c8878cd01d852797e016a7e8778da009c9b6968547a03'
    f'{GLYPH_MAGIC_HEX}886d6d51'
)
_MUTABLE_NFT_RE = re.compile(f'^{_MUTABLE_NFT_TEMPLATE}$')
# Two capture groups stand in for 32 + 36 bytes; the template is 174 bytes long
MUTABLE_NFT_SCRIPT_SIZE = (
    len(re.sub(r'\([^)]*\)', '', _MUTABLE_NFT_TEMPLATE)) // 2 + 32 + 36)


def _match_p2pkh(script: str) -> Optional[ScriptMatch]:
    m = _P2PKH_RE.match(script)
    if m:
        return ScriptMatch('p2pkh', ContractType.RXD, address=m.group(1))
    return None


def _match_nft(script: str) -> Optional[ScriptMatch]:
    m = _NFT_RE.match(script)
    if m:
        ref, address = m.groups()
        return ScriptMatch('nft', ContractType.NFT, ref=ref, refs=(ref,),
                           address=address)
    return None


def _match_ft(script: str) -> Optional[ScriptMatch]:
    m = _FT_RE.match(script)
    if m:
        address, ref = m.groups()
        return ScriptMatch('ft', ContractType.FT, ref=ref, refs=(ref,),
                           address=address)
    return None


def _match_mutable_nft(script: str) -> Optional[ScriptMatch]:
    m = _MUTABLE_NFT_RE.match(script)
    if m:
        payload_hash, ref = m.groups()
        return ScriptMatch('mut', ContractType.NFT, ref=ref, refs=(ref,),
                           hash=payload_hash)
    return None


def _match_delegate_burn(script: str) -> Optional[ScriptMatch]:
    m = _DELEGATE_BURN_RE.match(script)
    if m:
        ref = m.group(1)
        return ScriptMatch('delegate_burn', ContractType.DELEGATE_BURN,
                           ref=ref, refs=(ref,))
    return None


def _match_delegate_token(script: str) -> Optional[ScriptMatch]:
    m = _DELEGATE_BASE_RE.match(script)
    if not m:
        return None
    units = m.group(1)
    # Each unit is d1 <36-byte ref> 75, 38 bytes
    refs = tuple(units[i + 2:i + 74] for i in range(0, len(units), 76))
    tail = _P2PKH_RE.match(script[len(units):])
    return ScriptMatch('delegate_token', ContractType.DELEGATE_TOKEN,
                       ref=refs[0], refs=refs,
                       address=tail.group(1) if tail else None)


class ScriptRule(NamedTuple):
    size: int
    matcher: Callable[[str], Optional[ScriptMatch]]


# Evaluated in order; the first rule whose size and template both match wins.
SCRIPT_RULES: Tuple[ScriptRule, ...] = (
    ScriptRule(P2PKH_SCRIPT_SIZE, _match_p2pkh),
    ScriptRule(NFT_SCRIPT_SIZE, _match_nft),
    ScriptRule(DELEGATE_TOKEN_SCRIPT_SIZE, _match_delegate_token),
    ScriptRule(FT_SCRIPT_SIZE, _match_ft),
    ScriptRule(MUTABLE_NFT_SCRIPT_SIZE, _match_mutable_nft),
    ScriptRule(DELEGATE_BURN_SCRIPT_SIZE, _match_delegate_burn),
)


def classify_script(script_hex: str) -> Optional[ScriptMatch]:
    """Classify an output script given as hex.  Returns None if unrecognised."""
    if not script_hex or not isinstance(script_hex, str) or len(script_hex) % 2:
        return None
    script = script_hex.lower()
    size = len(script) // 2
    for rule in SCRIPT_RULES:
        if rule.size != size:
            continue
        match = rule.matcher(script)
        if match is not None:
            return match
    return None
