"""Tests for node block and transaction shapes."""

import pytest

from glyphdex.lib.tx import ChainDataError, parse_block, parse_tx

from conftest import coinbase_vin, make_block, make_hash, make_tx, p2pkh_script, vin, vout


class TestParseTx:

    def test_inputs_and_outputs(self):
        prev = make_hash('prev')
        tx = parse_tx(make_tx('a', [vin(prev, 2)], [vout(0, p2pkh_script(), 1.5)]))
        assert tx.txid == make_hash('tx-a')
        assert tx.inputs[0].outpoint.txid == prev
        assert tx.inputs[0].outpoint.vout == 2
        assert tx.inputs[0].script
        assert tx.outputs[0].value == 1.5
        assert tx.outputs[0].script_hex == p2pkh_script()
        assert not tx.is_coinbase

    def test_coinbase(self):
        tx = parse_tx(make_tx('cb', [coinbase_vin()], [vout(0, p2pkh_script())]))
        assert tx.is_coinbase
        assert tx.inputs[0].outpoint is None
        assert tx.inputs[0].script == b''

    def test_hex_lowercased(self):
        tx = parse_tx(make_tx('a', [vin(make_hash('p'), 0)],
                              [vout(0, p2pkh_script().upper())]))
        assert tx.outputs[0].script_hex == p2pkh_script()

    def test_unknown_fields_ignored(self):
        data = make_tx('a', [vin(make_hash('p'), 0)], [vout(0, p2pkh_script())])
        data['locktime'] = 0
        data['size'] = 200
        assert parse_tx(data).txid == data['txid']

    @pytest.mark.parametrize('mutate', [
        lambda d: d.update(txid='xyz'),
        lambda d: d['vout'][0].update(n=-1),
        lambda d: d['vout'][0]['scriptPubKey'].update(hex='abc'),
        lambda d: d['vout'][0].pop('scriptPubKey'),
        lambda d: d['vin'][0].update(vout=-1),
    ])
    def test_malformed(self, mutate):
        data = make_tx('a', [vin(make_hash('p'), 0)], [vout(0, p2pkh_script())])
        mutate(data)
        with pytest.raises(ChainDataError):
            parse_tx(data)

    def test_not_an_object(self):
        with pytest.raises(ChainDataError):
            parse_tx(['tx'])


class TestParseBlock:

    def test_block(self):
        data = make_block(101, [make_tx('cb', [coinbase_vin()], [vout(0, p2pkh_script())])])
        block = parse_block(data)
        assert block.height == 101
        assert block.hash == make_hash('block-101')
        assert block.previousblockhash == make_hash('block-100')
        assert len(block.tx) == 1

    def test_missing_height(self):
        data = make_block(101, [])
        del data['height']
        with pytest.raises(ChainDataError):
            parse_block(data)

    def test_not_an_object(self):
        with pytest.raises(ChainDataError):
            parse_block(None)
