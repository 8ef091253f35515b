"""
Canonical store gateway.

``CatalogStore`` lists the typed operations the catalog core needs from
the relational store: book rows, author/genre upserts, association
rows and user activity. ``SqlCatalogStore`` in ``sql_store`` is the
database-backed implementation; ``InMemoryCatalogStore`` below keeps
the same tables in dictionaries and is what the service falls back to
when no database is configured.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from typing_extensions import Protocol

from ..errors import ConflictError, NotFoundError
from ..models import (
    Author,
    BookAuthorLink,
    BookGenreLink,
    BookRow,
    ExternalSource,
    Genre,
    ReactionType,
    ReadingStatus,
    UserBookReaction,
    UserBookStatus,
)
from .filters import BookFilter


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CatalogStore(Protocol):
    async def get_book(self, book_id: str) -> Optional[BookRow]: ...

    async def find_book_by_external_id(
        self, source: ExternalSource, external_id: str
    ) -> Optional[BookRow]: ...

    async def create_book(self, row: BookRow) -> BookRow: ...

    async def update_book(self, book_id: str, fields: Dict[str, Any]) -> BookRow: ...

    async def upsert_author(self, author: Author) -> Author: ...

    async def upsert_book_author(self, link: BookAuthorLink) -> None: ...

    async def upsert_genre(self, genre: Genre) -> Genre: ...

    async def upsert_book_genre(self, link: BookGenreLink) -> None: ...

    async def list_book_authors(self, book_id: str) -> List[Author]: ...

    async def list_book_genres(self, book_id: str) -> List[Genre]: ...

    async def search_books(
        self, title_query: str, book_filter: BookFilter, *, limit: int, offset: int
    ) -> List[BookRow]: ...

    async def count_reactions(self, book_id: str, reaction: ReactionType) -> int: ...

    async def count_statuses(self, book_id: str, status: ReadingStatus) -> int: ...

    async def upsert_reaction(
        self, user_id: str, book_id: str, reaction: ReactionType
    ) -> UserBookReaction: ...

    async def upsert_status(
        self,
        user_id: str,
        book_id: str,
        status: ReadingStatus,
        started_at: Optional[datetime] = None,
        finished_at: Optional[datetime] = None,
    ) -> UserBookStatus: ...


class InMemoryCatalogStore:
    """Dictionary-backed store with the uniqueness rules of the schema."""

    def __init__(self) -> None:
        self.books: Dict[str, BookRow] = {}
        self.authors: Dict[str, Author] = {}
        self.genres: Dict[str, Genre] = {}
        # Keyed by (book_id, author_id); dict order is insertion order.
        self.book_authors: Dict[Tuple[str, str], BookAuthorLink] = {}
        self.book_genres: Dict[Tuple[str, str], BookGenreLink] = {}
        self.reactions: Dict[Tuple[str, str], UserBookReaction] = {}
        self.statuses: Dict[Tuple[str, str], UserBookStatus] = {}

    # Books

    async def get_book(self, book_id: str) -> Optional[BookRow]:
        row = self.books.get(book_id)
        return row.model_copy() if row else None

    async def find_book_by_external_id(
        self, source: ExternalSource, external_id: str
    ) -> Optional[BookRow]:
        for row in self.books.values():
            if row.external_source == source and row.external_id == external_id:
                return row.model_copy()
        return None

    async def create_book(self, row: BookRow) -> BookRow:
        if row.id in self.books:
            raise ConflictError(f"Book {row.id} already exists")
        if row.external_source and row.external_id:
            if await self.find_book_by_external_id(row.external_source, row.external_id):
                raise ConflictError(
                    f"Book with {row.external_source.value} id {row.external_id} already exists"
                )
        now = utcnow()
        stored = row.model_copy(update={"created_at": now, "updated_at": now})
        self.books[stored.id] = stored
        return stored.model_copy()

    async def update_book(self, book_id: str, fields: Dict[str, Any]) -> BookRow:
        row = self.books.get(book_id)
        if row is None:
            raise NotFoundError(f"Book {book_id} not found")
        stored = row.model_copy(update={**fields, "updated_at": utcnow()})
        self.books[book_id] = stored
        return stored.model_copy()

    async def search_books(
        self, title_query: str, book_filter: BookFilter, *, limit: int, offset: int
    ) -> List[BookRow]:
        needle = title_query.lower()
        matched = []
        for row in self.books.values():
            if needle not in row.title.lower():
                continue
            slugs = [g.slug for g in await self.list_book_genres(row.id)]
            facets = {
                "language": row.language,
                "publishedYear": row.published_year,
                "genreSlugs": slugs,
            }
            if book_filter.matches(facets):
                matched.append(row)
        matched.sort(key=lambda r: r.title)
        return [r.model_copy() for r in matched[offset:offset + limit]]

    # Authors and genres

    async def upsert_author(self, author: Author) -> Author:
        now = utcnow()
        existing = self.authors.get(author.id)
        if existing is None:
            stored = author.model_copy(update={"created_at": now, "updated_at": now})
        else:
            stored = existing.model_copy(
                update={"name": author.name, "sort_name": author.sort_name, "updated_at": now}
            )
        self.authors[stored.id] = stored
        return stored.model_copy()

    async def upsert_book_author(self, link: BookAuthorLink) -> None:
        key = (link.book_id, link.author_id)
        if key in self.book_authors:
            self.book_authors[key] = self.book_authors[key].model_copy(
                update={"role": link.role, "position": link.position}
            )
        else:
            self.book_authors[key] = link.model_copy()

    async def upsert_genre(self, genre: Genre) -> Genre:
        now = utcnow()
        for gid, existing in self.genres.items():
            if existing.slug == genre.slug:
                stored = existing.model_copy(update={"name": genre.name, "updated_at": now})
                self.genres[gid] = stored
                return stored.model_copy()
        if genre.id in self.genres:
            raise ConflictError(f"Genre {genre.id} already exists")
        stored = genre.model_copy(update={"created_at": now, "updated_at": now})
        self.genres[stored.id] = stored
        return stored.model_copy()

    async def upsert_book_genre(self, link: BookGenreLink) -> None:
        key = (link.book_id, link.genre_id)
        existing = self.book_genres.get(key)
        if existing is not None and link.confidence is None:
            return
        self.book_genres[key] = link.model_copy()

    async def list_book_authors(self, book_id: str) -> List[Author]:
        links = [l for (bid, _), l in self.book_authors.items() if bid == book_id]
        # sorted() is stable, so equal positions keep insertion order
        links = sorted(links, key=lambda l: l.position)
        return [self.authors[l.author_id].model_copy() for l in links if l.author_id in self.authors]

    async def list_book_genres(self, book_id: str) -> List[Genre]:
        return [
            self.genres[l.genre_id].model_copy()
            for (bid, _), l in self.book_genres.items()
            if bid == book_id and l.genre_id in self.genres
        ]

    # Activity

    async def count_reactions(self, book_id: str, reaction: ReactionType) -> int:
        return sum(
            1 for r in self.reactions.values() if r.book_id == book_id and r.reaction == reaction
        )

    async def count_statuses(self, book_id: str, status: ReadingStatus) -> int:
        return sum(
            1 for s in self.statuses.values() if s.book_id == book_id and s.status == status
        )

    async def upsert_reaction(
        self, user_id: str, book_id: str, reaction: ReactionType
    ) -> UserBookReaction:
        if book_id not in self.books:
            raise NotFoundError(f"Book {book_id} not found")
        now = utcnow()
        key = (user_id, book_id)
        existing = self.reactions.get(key)
        if existing is None:
            record = UserBookReaction(
                user_id=user_id, book_id=book_id, reaction=reaction, created_at=now, updated_at=now
            )
        else:
            record = existing.model_copy(update={"reaction": reaction, "updated_at": now})
        self.reactions[key] = record
        return record.model_copy()

    async def upsert_status(
        self,
        user_id: str,
        book_id: str,
        status: ReadingStatus,
        started_at: Optional[datetime] = None,
        finished_at: Optional[datetime] = None,
    ) -> UserBookStatus:
        if book_id not in self.books:
            raise NotFoundError(f"Book {book_id} not found")
        now = utcnow()
        key = (user_id, book_id)
        existing = self.statuses.get(key)
        if existing is None:
            record = UserBookStatus(
                user_id=user_id,
                book_id=book_id,
                status=status,
                started_at=started_at,
                finished_at=finished_at,
                created_at=now,
                updated_at=now,
            )
        else:
            update: Dict[str, Any] = {"status": status, "updated_at": now}
            if started_at is not None:
                update["started_at"] = started_at
            if finished_at is not None:
                update["finished_at"] = finished_at
            record = existing.model_copy(update=update)
        self.statuses[key] = record
        return record.model_copy()
