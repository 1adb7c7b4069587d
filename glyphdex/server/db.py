"""
Document collections on top of a key-value backend.

Each collection keeps pydantic documents serialised as CBOR under
``prefix + natural key``.  Declared secondary indexes live beside them as

    prefix + b'I' + field + b'\\x00' + value + b'\\x00' + natural key -> b''

and are rewritten in the same write batch as the document, so a document
and its index entries are never out of step.  Queries use an index when the
filter pins an indexed field to a single value and scan the collection
otherwise.

Reads never see writes still pending in a batch; a batch should touch each
document at most once.
"""

import os
from contextlib import contextmanager
from datetime import timezone
from typing import (Any, Callable, Dict, Generic, Iterable, List, Optional,
                    Sequence, Tuple, Type, TypeVar)

import cbor2
from pydantic import BaseModel

from glyphdex.lib import util
from glyphdex.server.storage import Storage, db_class

M = TypeVar('M', bound=BaseModel)

SortSpec = Sequence[Tuple[str, int]]

_MISSING = object()
_OPERATORS = ('$ne', '$in', '$nin', '$gt', '$gte', '$lt', '$lte', '$exists')


class DuplicateKeyError(Exception):
    """A document with the same natural key already exists."""


def _index_value(value: Any) -> bytes:
    if isinstance(value, bool):
        value = int(value)
    if hasattr(value, 'value'):
        value = value.value
    return str(value).encode()


def _compare(op: str, actual: Any, expected: Any) -> bool:
    if op == '$exists':
        return (actual is not _MISSING and actual is not None) == bool(expected)
    if op == '$ne':
        return actual is _MISSING or actual != expected
    if op == '$in':
        return actual is not _MISSING and actual in expected
    if op == '$nin':
        return actual is _MISSING or actual not in expected
    if actual is _MISSING or actual is None:
        return False
    try:
        if op == '$gt':
            return actual > expected
        if op == '$gte':
            return actual >= expected
        if op == '$lt':
            return actual < expected
        if op == '$lte':
            return actual <= expected
    except TypeError:
        return False
    raise ValueError(f'unsupported filter operator {op}')


def matches(doc: Dict[str, Any], query: Optional[Dict[str, Any]]) -> bool:
    """Test a plain document dict against a filter."""
    if not query:
        return True
    for field, cond in query.items():
        if field == '$or':
            if not any(matches(doc, sub) for sub in cond):
                return False
            continue
        actual = doc.get(field, _MISSING)
        if isinstance(cond, dict) and cond and all(k in _OPERATORS for k in cond):
            if not all(_compare(op, actual, arg) for op, arg in cond.items()):
                return False
        elif isinstance(actual, list) and not isinstance(cond, list):
            if cond not in actual:
                return False
        elif actual is _MISSING or actual != cond:
            return False
    return True


def _sort_key(value):
    # None sorts first, mixed types never compare
    return (value is not None, value if value is not None else 0)


class Collection(Generic[M]):
    """A named set of documents of one model type."""

    def __init__(self, storage: Storage, name: str, prefix: bytes,
                 model: Type[M], key: Callable[[M], str],
                 indexes: Iterable[str] = ()):
        self.storage = storage
        self.name = name
        self.prefix = prefix
        self.model = model
        self.key_of = key
        self.indexes = tuple(indexes)
        self.doc_prefix = prefix + b'D'
        self.index_prefix = prefix + b'I'

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    def _doc_key(self, key: str) -> bytes:
        return self.doc_prefix + key.encode()

    def _index_key(self, field: str, value: Any, key: str) -> bytes:
        return (self.index_prefix + field.encode() + b'\x00'
                + _index_value(value) + b'\x00' + key.encode())

    def _index_keys(self, doc: Dict[str, Any], key: str) -> List[bytes]:
        return [self._index_key(field, doc.get(field), key)
                for field in self.indexes]

    def _dump(self, doc: M) -> Dict[str, Any]:
        return doc.model_dump()

    def _encode(self, data: Dict[str, Any]) -> bytes:
        return cbor2.dumps(data, timezone=timezone.utc)

    def _decode(self, raw: bytes) -> M:
        return self.model.model_validate(cbor2.loads(raw))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @contextmanager
    def _batch(self, batch):
        if batch is not None:
            yield batch
        else:
            with self.storage.write_batch() as batch:
                yield batch

    def _write(self, doc: M, old: Optional[M], batch=None) -> M:
        key = self.key_of(doc)
        data = self._dump(doc)
        new_index = set(self._index_keys(data, key))
        old_index = set(self._index_keys(self._dump(old), key)) if old else set()
        with self._batch(batch) as b:
            for index_key in old_index - new_index:
                b.delete(index_key)
            for index_key in new_index - old_index:
                b.put(index_key, b'')
            b.put(self._doc_key(key), self._encode(data))
        return doc

    def insert(self, doc: M, batch=None) -> M:
        key = self.key_of(doc)
        if self.storage.get(self._doc_key(key)) is not None:
            raise DuplicateKeyError(f'{self.name}: duplicate key {key}')
        return self._write(doc, None, batch)

    def save(self, doc: M, batch=None) -> M:
        """Insert or replace by natural key."""
        return self._write(doc, self.get(self.key_of(doc)), batch)

    def update(self, key: str, batch=None, **fields) -> Optional[M]:
        """Set ``fields`` on the document at ``key``.  None if absent."""
        old = self.get(key)
        if old is None:
            return None
        new = self.model.model_validate({**self._dump(old), **fields})
        return self._write(new, old, batch)

    def update_many(self, query: Dict[str, Any], batch=None, **fields) -> int:
        docs = self.find(query)
        with self._batch(batch) as b:
            for doc in docs:
                self.update(self.key_of(doc), batch=b, **fields)
        return len(docs)

    def add_to_set(self, key: str, field: str, value: Any, batch=None) -> Optional[M]:
        """Append ``value`` to a list field unless already present."""
        old = self.get(key)
        if old is None:
            return None
        current = list(getattr(old, field) or [])
        if value in current:
            return old
        return self.update(key, batch=batch, **{field: current + [value]})

    def pull(self, key: str, field: str, value: Any, batch=None) -> Optional[M]:
        """Remove every occurrence of ``value`` from a list field."""
        old = self.get(key)
        if old is None:
            return None
        current = list(getattr(old, field) or [])
        if value not in current:
            return old
        return self.update(key, batch=batch,
                           **{field: [v for v in current if v != value]})

    def delete(self, key: str, batch=None) -> bool:
        old = self.get(key)
        if old is None:
            return False
        with self._batch(batch) as b:
            for index_key in self._index_keys(self._dump(old), key):
                b.delete(index_key)
            b.delete(self._doc_key(key))
        return True

    def delete_many(self, query: Dict[str, Any]) -> int:
        docs = self.find(query)
        with self.storage.write_batch() as batch:
            for doc in docs:
                self.delete(self.key_of(doc), batch=batch)
        return len(docs)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, key: str) -> Optional[M]:
        raw = self.storage.get(self._doc_key(key))
        return None if raw is None else self._decode(raw)

    def exists(self, key: str) -> bool:
        return self.storage.get(self._doc_key(key)) is not None

    def _indexed_keys(self, query: Dict[str, Any]) -> Optional[List[str]]:
        for field in self.indexes:
            if field not in query:
                continue
            cond = query[field]
            if isinstance(cond, dict) or isinstance(cond, list):
                continue
            prefix = (self.index_prefix + field.encode() + b'\x00'
                      + _index_value(cond) + b'\x00')
            return [key[len(prefix):].decode()
                    for key in self.storage.iterator(prefix=prefix,
                                                     include_value=False)]
        return None

    def _scan(self, query: Dict[str, Any]) -> Iterable[M]:
        keys = self._indexed_keys(query)
        if keys is None:
            for _key, raw in self.storage.iterator(prefix=self.doc_prefix):
                yield self._decode(raw)
        else:
            for key in keys:
                doc = self.get(key)
                if doc is not None:
                    yield doc

    def find(self, query: Optional[Dict[str, Any]] = None,
             sort: Optional[SortSpec] = None, skip: int = 0,
             limit: Optional[int] = None) -> List[M]:
        """Documents matching ``query``; ``sort`` is [(field, 1 | -1), ...]."""
        query = query or {}
        docs = [doc for doc in self._scan(query) if matches(self._dump(doc), query)]
        for field, direction in reversed(list(sort or ())):
            docs.sort(key=lambda doc: _sort_key(getattr(doc, field, None)),
                      reverse=direction < 0)
        if skip:
            docs = docs[skip:]
        if limit is not None:
            docs = docs[:limit]
        return docs

    def find_one(self, query: Optional[Dict[str, Any]] = None,
                 sort: Optional[SortSpec] = None) -> Optional[M]:
        docs = self.find(query, sort=sort, limit=1)
        return docs[0] if docs else None

    def count(self, query: Optional[Dict[str, Any]] = None) -> int:
        query = query or {}
        if not query:
            return sum(1 for _ in self.storage.iterator(
                prefix=self.doc_prefix, include_value=False))
        keys = self._indexed_keys(query)
        if keys is not None and len(query) == 1:
            return len(keys)
        return sum(1 for doc in self._scan(query)
                   if matches(self._dump(doc), query))


class DB:
    """The single handle to persistent state.

    Built once at start-up and handed to every repository.
    """

    def __init__(self, env=None, storage: Optional[Storage] = None):
        self.logger = util.class_logger(__name__, self.__class__.__name__)
        if storage is None:
            engine = getattr(env, 'db_engine', 'memory')
            directory = getattr(env, 'db_dir', None)
            klass = db_class(engine)
            if klass.__name__ == 'Memory':
                storage = klass()
                self.logger.info('using in-memory storage')
            else:
                os.makedirs(directory, exist_ok=True)
                storage = klass(os.path.join(directory, 'glyphs'))
                self.logger.info(f'using {klass.__name__} storage in {directory}')
        self.storage = storage

        # Deferred to keep models free of any storage concern
        from glyphdex.server import models

        self.blockheaders: Collection[models.BlockHeader] = Collection(
            storage, 'blockheaders', b'H', models.BlockHeader,
            key=lambda doc: doc.hash, indexes=('height', 'reorg'))
        self.txos: Collection[models.TxO] = Collection(
            storage, 'txos', b'T', models.TxO,
            key=lambda doc: doc.id,
            indexes=('txid', 'contract_type', 'spent', 'height'))
        self.glyphs: Collection[models.Glyph] = Collection(
            storage, 'glyphs', b'G', models.Glyph,
            key=lambda doc: doc.ref,
            indexes=('token_type', 'container', 'is_container', 'spent',
                     'reveal_outpoint', 'author'))
        self.importstate: Collection[models.ImportState] = Collection(
            storage, 'importstate', b'S', models.ImportState,
            key=lambda doc: models.ImportState.KEY)
        self.stats: Collection[models.Stats] = Collection(
            storage, 'stats', b'R', models.Stats,
            key=lambda doc: models.Stats.KEY)
        self.importlogs: Collection[models.ImportLog] = Collection(
            storage, 'importlogs', b'L', models.ImportLog,
            key=lambda doc: doc.id, indexes=('level', 'block_height'))

    def write_batch(self):
        """An atomic batch spanning every collection."""
        return self.storage.write_batch()

    def close(self):
        self.storage.close()
