"""
Book upsert and deduplication.

Identity is resolved in this order, first match wins:

1. ``external_source`` + non-blank ``external_id``: look the pair up.
   A hit is overwritten in full (missing fields become empty); a miss
   creates the book with the supplied id or a generated one.
2. Non-blank ``id``: look the primary key up. A hit keeps any field the
   caller left out; a miss creates the book under that id.
3. Otherwise a new book with a generated id.

Authors and genres are then synced additively: each supplied author is
upserted by id and linked with its role/position, each genre is
upserted by slug and linked with its confidence. Links the request
does not mention are left alone.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..errors import InvalidArgumentError
from ..models import Author, BookAuthorLink, BookGenreLink, BookRow, Genre
from .schemas import UpsertAuthor, UpsertBookRequest, UpsertGenre
from .store import CatalogStore


logger = logging.getLogger(__name__)

_SCALAR_FIELDS = (
    "subtitle",
    "description",
    "language",
    "published_year",
    "cover_image_url",
)


def new_id() -> str:
    return str(uuid.uuid4())


def _blank(value: Optional[str]) -> bool:
    return not value or not value.strip()


def _scalars(request: UpsertBookRequest) -> Dict[str, Any]:
    # Empty strings and zero years are stored as NULL.
    return {name: getattr(request, name) or None for name in _SCALAR_FIELDS}


@dataclass
class UpsertResult:
    row: BookRow
    created: bool


class BookUpserter:
    def __init__(self, store: CatalogStore) -> None:
        self._store = store

    async def upsert(self, request: UpsertBookRequest) -> UpsertResult:
        if _blank(request.title):
            raise InvalidArgumentError("title is required")

        result = await self._resolve_and_write(request)
        book_id = result.row.id
        if request.authors:
            await self._sync_authors(book_id, request.authors)
        if request.genres:
            await self._sync_genres(book_id, request.genres)
        return result

    async def _resolve_and_write(self, request: UpsertBookRequest) -> UpsertResult:
        scalars = _scalars(request)

        if request.external_source and not _blank(request.external_id):
            existing = await self._store.find_book_by_external_id(
                request.external_source, request.external_id
            )
            if existing is not None:
                row = await self._store.update_book(
                    existing.id, {"title": request.title, **scalars}
                )
                logger.debug("Updated book %s by external identity", row.id)
                return UpsertResult(row=row, created=False)
            row = await self._store.create_book(
                BookRow(
                    id=request.id if not _blank(request.id) else new_id(),
                    title=request.title,
                    external_source=request.external_source,
                    external_id=request.external_id,
                    **scalars,
                )
            )
            logger.info("Created book %s from %s", row.id, request.external_source.value)
            return UpsertResult(row=row, created=True)

        if not _blank(request.id):
            existing = await self._store.get_book(request.id)
            if existing is not None:
                fields = {"title": request.title}
                fields.update({k: v for k, v in scalars.items() if v is not None})
                row = await self._store.update_book(existing.id, fields)
                return UpsertResult(row=row, created=False)
            row = await self._store.create_book(
                BookRow(id=request.id, title=request.title, **scalars)
            )
            return UpsertResult(row=row, created=True)

        row = await self._store.create_book(BookRow(id=new_id(), title=request.title, **scalars))
        return UpsertResult(row=row, created=True)

    async def _sync_authors(self, book_id: str, authors: List[UpsertAuthor]) -> None:
        for a in authors:
            author = await self._store.upsert_author(
                Author(
                    id=a.id if not _blank(a.id) else new_id(),
                    name=a.name,
                    sort_name=a.sort_name or None,
                    external_source=a.external_source,
                    external_id=a.external_id or None,
                )
            )
            await self._store.upsert_book_author(
                BookAuthorLink(
                    book_id=book_id,
                    author_id=author.id,
                    role=a.role or None,
                    position=a.position,
                )
            )

    async def _sync_genres(self, book_id: str, genres: List[UpsertGenre]) -> None:
        for g in genres:
            if _blank(g.slug):
                raise InvalidArgumentError("genre slug is required")
            genre = await self._store.upsert_genre(
                Genre(id=g.id if not _blank(g.id) else new_id(), name=g.name, slug=g.slug)
            )
            await self._store.upsert_book_genre(
                BookGenreLink(book_id=book_id, genre_id=genre.id, confidence=g.confidence)
            )
