"""Tests for outpoints and reference encodings."""

import pytest

from glyphdex.lib.outpoint import (
    Outpoint,
    format_outpoint,
    is_ref,
    pack_ref,
    parse_outpoint,
    ref_to_outpoint,
)

TXID = '11' * 31 + 'ff'


class TestOutpointStrings:

    @pytest.mark.parametrize('vout', [0, 1, 255, 65536, 0xffffffff])
    def test_round_trip(self, vout):
        """parse(format(x)) returns x."""
        assert parse_outpoint(format_outpoint(TXID, vout)) == (TXID, vout)

    def test_format(self):
        assert format_outpoint(TXID, 3) == f'{TXID}:3'

    def test_txid_is_lowercased(self):
        assert Outpoint(TXID.upper(), 0).txid == TXID

    @pytest.mark.parametrize('text', [
        TXID, f'{TXID}:', f'{TXID}:-1', f'{TXID}:x', f'{TXID[:-2]}:0', ':0',
    ])
    def test_parse_rejects_malformed(self, text):
        with pytest.raises(ValueError):
            parse_outpoint(text)

    def test_vout_range(self):
        with pytest.raises(ValueError):
            Outpoint(TXID, 0x100000000)
        with pytest.raises(ValueError):
            Outpoint(TXID, True)

    def test_immutable(self):
        outpoint = Outpoint(TXID, 1)
        with pytest.raises(AttributeError):
            outpoint.vout = 2

    def test_hashable(self):
        assert len({Outpoint(TXID, 1), Outpoint(TXID, 1), Outpoint(TXID, 2)}) == 2


class TestWireForm:

    def test_bytes_round_trip(self):
        outpoint = Outpoint(TXID, 7)
        data = outpoint.to_bytes()
        assert len(data) == 36
        assert Outpoint.from_bytes(data) == outpoint

    def test_wire_order(self):
        """Txid is stored reversed and vout little-endian."""
        data = Outpoint(TXID, 1).to_bytes()
        assert data[0] == 0xff
        assert data[32:] == b'\x01\x00\x00\x00'

    def test_from_bytes_length(self):
        with pytest.raises(ValueError):
            Outpoint.from_bytes(b'\x00' * 35)


class TestReferences:

    def test_pack_ref_is_big_endian(self):
        assert pack_ref(TXID, 1) == TXID + '00000001'

    def test_ref_le_reverses_txid_and_vout_separately(self):
        """The in-script form is not the byte-reversal of the big-endian ref."""
        outpoint = Outpoint(TXID, 5)
        assert outpoint.ref_le() == 'ff' + '11' * 31 + '05000000'
        assert outpoint.ref_le() != bytes(reversed(bytes.fromhex(outpoint.ref()))).hex()

    @pytest.mark.parametrize('vout', [0, 3, 9, 0x01020304])
    def test_from_ref_le(self, vout):
        outpoint = Outpoint(TXID, vout)
        assert Outpoint.from_ref_le(outpoint.ref_le()) == outpoint
        assert Outpoint.from_ref_le(outpoint.ref_le()).ref() == pack_ref(TXID, vout)

    def test_ref_to_outpoint(self):
        assert ref_to_outpoint(pack_ref(TXID, 2)) == f'{TXID}:2'

    def test_is_ref(self):
        assert is_ref(pack_ref(TXID, 0))
        assert not is_ref(TXID)
        assert not is_ref(None)

    def test_from_ref_le_rejects_bad_input(self):
        with pytest.raises(ValueError):
            Outpoint.from_ref_le('zz' * 36)
        with pytest.raises(ValueError):
            Outpoint.from_ref_le('ab' * 35)
