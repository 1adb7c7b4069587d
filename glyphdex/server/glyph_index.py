"""
Glyph Token Index

Stores Glyph entities by reference and keeps container membership
consistent on both sides: a container lists its members in
``container_items`` and every member names its container in ``container``.
"""

from typing import Any, Dict, List, Optional, Tuple

from glyphdex.lib import util
from glyphdex.lib.glyph import UNKNOWN, GlyphType
from glyphdex.server.db import DB
from glyphdex.server.models import Glyph

_CONTAINER_QUERY = {'$or': [{'is_container': True},
                            {'token_type': GlyphType.CONTAINER}]}
_NEWEST_FIRST = [('height', -1), ('ref', 1)]


class GlyphIndex:
    """Repository for Glyph documents keyed by their big-endian ref."""

    def __init__(self, db: DB):
        self.logger = util.class_logger(__name__, self.__class__.__name__)
        self.db = db
        self.glyphs = db.glyphs

    # ========================================================================
    # Lookups
    # ========================================================================

    def find_by_ref(self, ref: str) -> Optional[Glyph]:
        return self.glyphs.get(ref)

    def find_by_reveal_outpoint(self, outpoint: str) -> Optional[Glyph]:
        """The glyph whose current location is ``txid:vout``."""
        return self.glyphs.find_one({'reveal_outpoint': outpoint})

    def find_all(self, limit: int = 100, skip: int = 0,
                 query: Optional[Dict[str, Any]] = None) -> List[Glyph]:
        return self.glyphs.find(query, sort=_NEWEST_FIRST, skip=skip, limit=limit)

    def find_by_token_type(self, token_type: GlyphType, limit: int = 100,
                           skip: int = 0,
                           query: Optional[Dict[str, Any]] = None) -> List[Glyph]:
        return self.find_all(limit, skip, {'token_type': token_type, **(query or {})})

    def find_active(self, limit: int = 100, skip: int = 0) -> List[Glyph]:
        """Unspent glyphs that have moved at least once since minting."""
        return self.find_all(limit, skip, {'spent': 0, 'fresh': 0})

    def find_by_author(self, author: str, limit: int = 100, skip: int = 0,
                       query: Optional[Dict[str, Any]] = None) -> List[Glyph]:
        return self.find_all(limit, skip, {'author': author, **(query or {})})

    def find_by_container(self, container_ref: str, limit: int = 100,
                          skip: int = 0,
                          query: Optional[Dict[str, Any]] = None) -> List[Glyph]:
        return self.find_all(limit, skip, {'container': container_ref, **(query or {})})

    def find_containers(self, limit: int = 100, skip: int = 0,
                        query: Optional[Dict[str, Any]] = None) -> List[Glyph]:
        return self.find_all(limit, skip, {**_CONTAINER_QUERY, **(query or {})})

    def find_users(self, limit: int = 100, skip: int = 0,
                   query: Optional[Dict[str, Any]] = None) -> List[Glyph]:
        return self.find_by_token_type(GlyphType.USER, limit, skip, query)

    def search(self, text: str, limit: int = 100, skip: int = 0,
               query: Optional[Dict[str, Any]] = None) -> List[Glyph]:
        """Case-insensitive word search over name, description and author.

        Results are ranked by the number of matching words.
        """
        words = [w for w in text.lower().split() if w]
        if not words:
            return []
        scored: List[Tuple[int, Glyph]] = []
        for glyph in self.glyphs.find(query):
            haystack = ' '.join((glyph.name, glyph.description, glyph.author)).lower()
            score = sum(haystack.count(word) for word in words)
            if score:
                scored.append((score, glyph))
        scored.sort(key=lambda pair: (-pair[0], -pair[1].height, pair[1].ref))
        return [glyph for _score, glyph in scored[skip:skip + limit]]

    def count(self, query: Optional[Dict[str, Any]] = None) -> int:
        return self.glyphs.count(query)

    def count_by_token_type(self, token_type: GlyphType) -> int:
        return self.glyphs.count({'token_type': token_type})

    def count_by_container(self, container_ref: str) -> int:
        return self.glyphs.count({'container': container_ref})

    def count_containers(self) -> int:
        return self.glyphs.count(_CONTAINER_QUERY)

    def count_contained_items(self) -> int:
        return self.glyphs.count({
            'container': {'$ne': UNKNOWN},
            'is_container': False,
        })

    # ========================================================================
    # Writes
    # ========================================================================

    def find_or_create(self, glyph: Glyph) -> Tuple[Glyph, bool]:
        """Return the stored glyph for ``glyph.ref``, inserting ``glyph``
        if there is none.

        This is the only way new glyphs enter the index; keying on the ref
        makes reprocessing a block harmless.
        """
        existing = self.glyphs.get(glyph.ref)
        if existing is not None:
            return existing, False
        self.glyphs.insert(glyph)
        self.logger.debug(f'created glyph {glyph.ref} ({glyph.token_type})')
        return glyph, True

    def update(self, ref: str, **fields) -> Optional[Glyph]:
        return self.glyphs.update(ref, **fields)

    def mark_spent(self, ref: str) -> bool:
        """Mark a glyph melted.  Returns False if unknown or already spent."""
        glyph = self.glyphs.get(ref)
        if glyph is None or glyph.spent:
            return False
        self.glyphs.update(ref, spent=1)
        return True

    def add_to_container(self, container_ref: str, glyph_ref: str) -> bool:
        """Link a glyph into a container, updating both documents together.

        Returns False if either glyph is unknown or the refs are equal.
        """
        if container_ref == glyph_ref:
            return False
        container = self.glyphs.get(container_ref)
        member = self.glyphs.get(glyph_ref)
        if container is None or member is None:
            return False
        with self.db.write_batch() as batch:
            self.glyphs.add_to_set(container_ref, 'container_items', glyph_ref,
                                   batch=batch)
            if member.container != container_ref:
                self.glyphs.update(glyph_ref, batch=batch, container=container_ref)
        return True

    def remove_from_container(self, container_ref: str, glyph_ref: str) -> bool:
        """Unlink a glyph from a container on both sides."""
        container = self.glyphs.get(container_ref)
        member = self.glyphs.get(glyph_ref)
        if container is None and member is None:
            return False
        with self.db.write_batch() as batch:
            if container is not None:
                self.glyphs.pull(container_ref, 'container_items', glyph_ref,
                                 batch=batch)
            if member is not None and member.container == container_ref:
                self.glyphs.update(glyph_ref, batch=batch, container=UNKNOWN)
        return True

    def move_to_container(self, glyph_ref: str, container_ref: str) -> bool:
        """Place a glyph in ``container_ref``, leaving any previous container."""
        member = self.glyphs.get(glyph_ref)
        if member is None:
            return False
        previous = member.container
        if previous == container_ref:
            return self.add_to_container(container_ref, glyph_ref)
        if not self.glyphs.exists(container_ref) or container_ref == glyph_ref:
            return False
        if previous != UNKNOWN:
            self.remove_from_container(previous, glyph_ref)
        return self.add_to_container(container_ref, glyph_ref)
