"""
Outpoints and Glyph references.

An outpoint names a transaction output: a 32-byte transaction id plus a
4-byte output index.  It appears in three encodings:

  * wire form (36 bytes): txid in internal byte order || vout as uint32 LE.
    This is what inputs carry and what ref opcodes push inside scripts, so
    it is also called the little-endian reference.
  * display form: ``"<txid_hex>:<vout>"``.
  * big-endian reference (72 hex chars): display txid || vout as uint32 BE.
    Glyph ``ref``, ``author`` and ``container`` keys use this form.

The little-endian reference is not the byte-reversal of the big-endian one:
the txid and the vout are each reversed on their own.
"""

import re
import struct
from typing import Tuple

from glyphdex.lib.hash import hash_to_hex_str, hex_str_to_hash

OUTPOINT_LEN = 36
REF_HEX_LEN = OUTPOINT_LEN * 2
MAX_VOUT = 0xffffffff

_TXID_RE = re.compile(r'^[0-9a-f]{64}$')
_REF_RE = re.compile(r'^[0-9a-f]{72}$')


class Outpoint:
    """An immutable (txid, vout) pair.  ``txid`` is kept in display hex."""

    __slots__ = ('txid', 'vout')

    def __init__(self, txid: str, vout: int):
        if not isinstance(txid, str) or not _TXID_RE.match(txid.lower()):
            raise ValueError(f'invalid txid: {txid!r}')
        if isinstance(vout, bool) or not isinstance(vout, int) \
                or not 0 <= vout <= MAX_VOUT:
            raise ValueError(f'invalid output index: {vout!r}')
        object.__setattr__(self, 'txid', txid.lower())
        object.__setattr__(self, 'vout', vout)

    def __setattr__(self, name, value):
        raise AttributeError('Outpoint is immutable')

    @classmethod
    def from_bytes(cls, data: bytes) -> 'Outpoint':
        """Build from the 36-byte wire form."""
        if len(data) != OUTPOINT_LEN:
            raise ValueError(f'outpoint must be {OUTPOINT_LEN} bytes, '
                             f'got {len(data)}')
        vout, = struct.unpack('<I', data[32:])
        return cls(hash_to_hex_str(data[:32]), vout)

    def to_bytes(self) -> bytes:
        return hex_str_to_hash(self.txid) + struct.pack('<I', self.vout)

    @classmethod
    def from_string(cls, text: str) -> 'Outpoint':
        """Parse the ``txid:vout`` display form."""
        txid, sep, vout = text.partition(':')
        if not sep or not vout.isdigit():
            raise ValueError(f'invalid outpoint string: {text!r}')
        return cls(txid, int(vout))

    @classmethod
    def from_ref(cls, ref: str) -> 'Outpoint':
        """Parse a big-endian reference."""
        if not isinstance(ref, str) or not _REF_RE.match(ref.lower()):
            raise ValueError(f'invalid reference: {ref!r}')
        return cls(ref[:64], int(ref[64:], 16))

    @classmethod
    def from_ref_le(cls, ref_le: str) -> 'Outpoint':
        """Parse a little-endian (in-script) reference."""
        if not isinstance(ref_le, str) or not _REF_RE.match(ref_le.lower()):
            raise ValueError(f'invalid reference: {ref_le!r}')
        return cls.from_bytes(bytes.fromhex(ref_le))

    def ref(self) -> str:
        """Big-endian reference hex."""
        return f'{self.txid}{self.vout:08x}'

    def ref_le(self) -> str:
        """Little-endian reference hex, as pushed by ref opcodes."""
        return self.to_bytes().hex()

    def __str__(self):
        return f'{self.txid}:{self.vout}'

    def __repr__(self):
        return f'Outpoint({self.txid!r}, {self.vout})'

    def __eq__(self, other):
        if not isinstance(other, Outpoint):
            return NotImplemented
        return self.txid == other.txid and self.vout == other.vout

    def __hash__(self):
        return hash((self.txid, self.vout))


def format_outpoint(txid: str, vout: int) -> str:
    """Format a ``txid:vout`` string."""
    return str(Outpoint(txid, vout))


def parse_outpoint(text: str) -> Tuple[str, int]:
    """Parse a ``txid:vout`` string into its parts."""
    outpoint = Outpoint.from_string(text)
    return outpoint.txid, outpoint.vout


def pack_ref(txid: str, vout: int) -> str:
    """Big-endian reference for a txid (display hex) and output index."""
    return Outpoint(txid, vout).ref()


def is_ref(value) -> bool:
    return isinstance(value, str) and bool(_REF_RE.match(value.lower()))


def ref_to_outpoint(ref: str) -> str:
    """``txid:vout`` display string for a big-endian reference."""
    return str(Outpoint.from_ref(ref))
