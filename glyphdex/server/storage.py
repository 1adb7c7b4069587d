"""Backend database abstraction."""

import os
from bisect import bisect_left, insort
from contextlib import contextmanager
from functools import partial
from typing import Dict, Iterator, List, Optional, Type

from glyphdex.lib import util


def db_class(name) -> Type['Storage']:
    """Returns a DB engine class."""
    for db_class in util.subclasses(Storage):
        if db_class.__name__.lower() == name.lower():
            db_class.import_module()
            return db_class
    raise RuntimeError(f'unrecognised DB engine "{name}"')


class Storage:
    """Abstract base class of the DB backend abstraction."""

    def __init__(self, name, for_sync=False):
        self.is_new = not os.path.exists(name)
        self.for_sync = for_sync or self.is_new
        self.open(name, create=self.is_new)

    @classmethod
    def import_module(cls):
        """Import the DB engine module."""
        raise NotImplementedError

    def open(self, name, create):
        """Open an existing database or create a new one."""
        raise NotImplementedError

    def close(self):
        """Close an existing database."""
        raise NotImplementedError

    def get(self, key: bytes) -> Optional[bytes]:
        raise NotImplementedError

    def put(self, key: bytes, value: bytes):
        raise NotImplementedError

    def delete(self, key: bytes):
        raise NotImplementedError

    def write_batch(self):
        """Return a context manager that provides `put` and `delete`.

        Changes should only be committed when the context manager
        closes without an exception.
        """
        raise NotImplementedError

    def iterator(self, prefix=b'', reverse=False, include_value=True):
        """Return an iterator that yields (key, value) pairs from the
        database sorted by key.

        If `prefix` is set, only keys starting with `prefix` will be
        included.  If `reverse` is True the items are returned in
        reverse order.  With `include_value` False only keys are yielded.
        """
        raise NotImplementedError


class LevelDB(Storage):
    """LevelDB database engine."""

    @classmethod
    def import_module(cls):
        import plyvel
        cls.module = plyvel

    def open(self, name, create):
        mof = 512 if self.for_sync else 128
        # Use snappy compression (the default)
        self.db = self.module.DB(name, create_if_missing=create,
                                 max_open_files=mof)
        self.close = self.db.close
        self.get = self.db.get
        self.put = self.db.put
        self.delete = self.db.delete
        self.iterator = self.db.iterator
        self.write_batch = partial(self.db.write_batch, transaction=True,
                                   sync=True)


class _MemoryBatch:

    def __init__(self):
        self.ops: List = []

    def put(self, key: bytes, value: bytes):
        self.ops.append((key, value))

    def delete(self, key: bytes):
        self.ops.append((key, None))


class Memory(Storage):
    """Ordered in-memory engine; nothing survives close()."""

    @classmethod
    def import_module(cls):
        pass

    def __init__(self, name=':memory:', for_sync=False):
        self.is_new = True
        self.for_sync = True
        self.open(name, create=True)

    def open(self, name, create):
        self._data: Dict[bytes, bytes] = {}
        self._keys: List[bytes] = []

    def close(self):
        self._data.clear()
        self._keys.clear()

    def get(self, key):
        return self._data.get(key)

    def put(self, key, value):
        if key not in self._data:
            insort(self._keys, key)
        self._data[key] = bytes(value)

    def delete(self, key):
        if self._data.pop(key, None) is not None:
            del self._keys[bisect_left(self._keys, key)]

    @contextmanager
    def write_batch(self):
        batch = _MemoryBatch()
        yield batch
        for key, value in batch.ops:
            if value is None:
                self.delete(key)
            else:
                self.put(key, value)

    def iterator(self, prefix=b'', reverse=False, include_value=True) -> Iterator:
        start = bisect_left(self._keys, prefix)
        keys = []
        for key in self._keys[start:]:
            if not key.startswith(prefix):
                break
            keys.append(key)
        if reverse:
            keys.reverse()
        for key in keys:
            if include_value:
                value = self._data.get(key)
                if value is not None:
                    yield key, value
            else:
                yield key
