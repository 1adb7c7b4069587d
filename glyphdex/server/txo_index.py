"""Index of recognised transaction outputs."""

from typing import List, Optional

from glyphdex.lib import util
from glyphdex.lib.outpoint import format_outpoint
from glyphdex.lib.script import ContractType
from glyphdex.server.db import DB
from glyphdex.server.models import TxO


class TxOIndex:
    """TxOs keyed by ``txid:vout``.  ``spent`` only ever goes 0 -> 1."""

    def __init__(self, db: DB):
        self.logger = util.class_logger(__name__, self.__class__.__name__)
        self.txos = db.txos

    def find(self, txid: str, vout: int) -> Optional[TxO]:
        return self.txos.get(format_outpoint(txid, vout))

    def find_by_id(self, txo_id: str) -> Optional[TxO]:
        return self.txos.get(txo_id)

    def exists(self, txid: str, vout: int) -> bool:
        return self.txos.exists(format_outpoint(txid, vout))

    def create(self, txo: TxO) -> TxO:
        return self.txos.insert(txo)

    def mark_spent(self, txid: str, vout: int) -> bool:
        """Mark an output spent.  Returns False if unknown or already spent."""
        txo = self.find(txid, vout)
        if txo is None or txo.spent:
            return False
        self.txos.update(txo.id, spent=1)
        return True

    def find_by_txid(self, txid: str) -> List[TxO]:
        return self.txos.find({'txid': txid}, sort=[('vout', 1)])

    def find_by_contract_type(self, contract_type: ContractType,
                              limit: int = 100, skip: int = 0) -> List[TxO]:
        return self.txos.find({'contract_type': contract_type},
                              sort=[('height', -1)], skip=skip, limit=limit)

    def find_unspent(self, limit: int = 100, skip: int = 0) -> List[TxO]:
        return self.txos.find({'spent': 0}, sort=[('height', -1)],
                              skip=skip, limit=limit)

    def count_by_contract_type(self, contract_type: ContractType) -> int:
        return self.txos.count({'contract_type': contract_type})

    def count(self) -> int:
        return self.txos.count()
