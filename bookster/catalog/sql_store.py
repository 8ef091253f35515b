"""
SQLAlchemy implementation of the canonical store gateway.

The schema mirrors the catalog's relational model: books with an
optional (external_source, external_id) unique pair, authors, genres
with a unique slug, the two association tables and the per-user
activity tables. Association and activity tables carry a surrogate
``seq`` key so that ties on ``position`` resolve in insertion order.

Every operation opens its own session, which lets callers fan out
independent reads (the activity counters) concurrently. A duplicate
key raises ``ConflictError``; any other database failure, read or
write, raises ``UpstreamUnavailableError``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional

from sqlalchemy import (
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    select,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ..errors import ConflictError, NotFoundError, UpstreamUnavailableError
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
from .store import utcnow


logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class BookTable(Base):
    __tablename__ = "books"
    __table_args__ = (UniqueConstraint("external_source", "external_id"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(500))
    subtitle: Mapped[Optional[str]] = mapped_column(String(500))
    description: Mapped[Optional[str]] = mapped_column(Text)
    language: Mapped[Optional[str]] = mapped_column(String(16))
    published_year: Mapped[Optional[int]] = mapped_column(Integer)
    cover_image_url: Mapped[Optional[str]] = mapped_column(String(1024))
    external_source: Mapped[Optional[ExternalSource]] = mapped_column(Enum(ExternalSource))
    external_id: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )


class AuthorTable(Base):
    __tablename__ = "authors"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    sort_name: Mapped[Optional[str]] = mapped_column(String(255))
    external_source: Mapped[Optional[ExternalSource]] = mapped_column(Enum(ExternalSource))
    external_id: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )


class GenreTable(Base):
    __tablename__ = "genres"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    slug: Mapped[str] = mapped_column(String(255), unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )


class BookAuthorTable(Base):
    __tablename__ = "book_authors"
    __table_args__ = (UniqueConstraint("book_id", "author_id"),)

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    book_id: Mapped[str] = mapped_column(ForeignKey("books.id", ondelete="CASCADE"))
    author_id: Mapped[str] = mapped_column(ForeignKey("authors.id", ondelete="CASCADE"))
    role: Mapped[Optional[str]] = mapped_column(String(64))
    position: Mapped[int] = mapped_column(Integer, default=0)


class BookGenreTable(Base):
    __tablename__ = "book_genres"
    __table_args__ = (UniqueConstraint("book_id", "genre_id"),)

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    book_id: Mapped[str] = mapped_column(ForeignKey("books.id", ondelete="CASCADE"))
    genre_id: Mapped[str] = mapped_column(ForeignKey("genres.id", ondelete="CASCADE"))
    confidence: Mapped[Optional[float]] = mapped_column(Float)


class ReactionTable(Base):
    __tablename__ = "user_book_reactions"
    __table_args__ = (UniqueConstraint("user_id", "book_id"),)

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64))
    book_id: Mapped[str] = mapped_column(ForeignKey("books.id", ondelete="CASCADE"), index=True)
    reaction: Mapped[ReactionType] = mapped_column(Enum(ReactionType))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )


class StatusTable(Base):
    __tablename__ = "user_book_statuses"
    __table_args__ = (UniqueConstraint("user_id", "book_id"),)

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64))
    book_id: Mapped[str] = mapped_column(ForeignKey("books.id", ondelete="CASCADE"), index=True)
    status: Mapped[ReadingStatus] = mapped_column(Enum(ReadingStatus))
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )


_BOOK_FIELDS = (
    "title",
    "subtitle",
    "description",
    "language",
    "published_year",
    "cover_image_url",
    "external_source",
    "external_id",
)


def _book_row(obj: BookTable) -> BookRow:
    return BookRow.model_validate(obj, from_attributes=True)


def _author(obj: AuthorTable) -> Author:
    return Author.model_validate(obj, from_attributes=True)


def _genre(obj: GenreTable) -> Genre:
    return Genre.model_validate(obj, from_attributes=True)


class SqlCatalogStore:
    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self._sessions = async_sessionmaker(engine, expire_on_commit=False)

    @classmethod
    def from_url(cls, url: str) -> "SqlCatalogStore":
        return cls(create_async_engine(url))

    async def create_schema(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self._engine.dispose()

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        async with self._sessions() as session:
            try:
                yield session
            except SQLAlchemyError as exc:
                raise UpstreamUnavailableError(f"Catalog database unavailable: {exc}") from exc

    async def _commit(self, session: AsyncSession, what: str) -> None:
        try:
            await session.commit()
        except IntegrityError as exc:
            await session.rollback()
            raise ConflictError(f"Duplicate key while writing {what}") from exc
        except SQLAlchemyError as exc:
            await session.rollback()
            raise UpstreamUnavailableError(f"Failed to write {what}: {exc}") from exc

    # Books

    async def get_book(self, book_id: str) -> Optional[BookRow]:
        async with self._session() as session:
            obj = await session.get(BookTable, book_id)
            return _book_row(obj) if obj else None

    async def find_book_by_external_id(
        self, source: ExternalSource, external_id: str
    ) -> Optional[BookRow]:
        async with self._session() as session:
            stmt = select(BookTable).where(
                BookTable.external_source == source, BookTable.external_id == external_id
            )
            obj = (await session.execute(stmt)).scalar_one_or_none()
            return _book_row(obj) if obj else None

    async def create_book(self, row: BookRow) -> BookRow:
        async with self._session() as session:
            obj = BookTable(id=row.id, **{f: getattr(row, f) for f in _BOOK_FIELDS})
            session.add(obj)
            await self._commit(session, f"book {row.id}")
            return _book_row(obj)

    async def update_book(self, book_id: str, fields: Dict[str, Any]) -> BookRow:
        async with self._session() as session:
            obj = await session.get(BookTable, book_id)
            if obj is None:
                raise NotFoundError(f"Book {book_id} not found")
            for name, value in fields.items():
                setattr(obj, name, value)
            await self._commit(session, f"book {book_id}")
            await session.refresh(obj)
            return _book_row(obj)

    async def search_books(
        self, title_query: str, book_filter: BookFilter, *, limit: int, offset: int
    ) -> List[BookRow]:
        stmt = select(BookTable).where(
            func.lower(BookTable.title).contains(title_query.lower(), autoescape=True)
        )
        if book_filter.language:
            stmt = stmt.where(BookTable.language == book_filter.language)
        if book_filter.published_year_min is not None:
            stmt = stmt.where(BookTable.published_year >= book_filter.published_year_min)
        if book_filter.published_year_max is not None:
            stmt = stmt.where(BookTable.published_year <= book_filter.published_year_max)
        if book_filter.genre_slugs:
            tagged = (
                select(BookGenreTable.book_id)
                .join(GenreTable, GenreTable.id == BookGenreTable.genre_id)
                .where(GenreTable.slug.in_(book_filter.genre_slugs))
            )
            stmt = stmt.where(BookTable.id.in_(tagged))
        stmt = stmt.order_by(BookTable.title).limit(limit).offset(offset)
        async with self._session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_book_row(r) for r in rows]

    # Authors and genres

    async def upsert_author(self, author: Author) -> Author:
        async with self._session() as session:
            obj = await session.get(AuthorTable, author.id)
            if obj is None:
                obj = AuthorTable(
                    id=author.id,
                    name=author.name,
                    sort_name=author.sort_name,
                    external_source=author.external_source,
                    external_id=author.external_id,
                )
                session.add(obj)
            else:
                obj.name = author.name
                obj.sort_name = author.sort_name
            await self._commit(session, f"author {author.id}")
            return _author(obj)

    async def upsert_book_author(self, link: BookAuthorLink) -> None:
        async with self._session() as session:
            stmt = select(BookAuthorTable).where(
                BookAuthorTable.book_id == link.book_id,
                BookAuthorTable.author_id == link.author_id,
            )
            obj = (await session.execute(stmt)).scalar_one_or_none()
            if obj is None:
                session.add(
                    BookAuthorTable(
                        book_id=link.book_id,
                        author_id=link.author_id,
                        role=link.role,
                        position=link.position,
                    )
                )
            else:
                obj.role = link.role
                obj.position = link.position
            await self._commit(session, f"book_author {link.book_id}/{link.author_id}")

    async def upsert_genre(self, genre: Genre) -> Genre:
        async with self._session() as session:
            stmt = select(GenreTable).where(GenreTable.slug == genre.slug)
            obj = (await session.execute(stmt)).scalar_one_or_none()
            if obj is None:
                obj = GenreTable(id=genre.id, name=genre.name, slug=genre.slug)
                session.add(obj)
            else:
                obj.name = genre.name
            await self._commit(session, f"genre {genre.slug}")
            return _genre(obj)

    async def upsert_book_genre(self, link: BookGenreLink) -> None:
        async with self._session() as session:
            stmt = select(BookGenreTable).where(
                BookGenreTable.book_id == link.book_id,
                BookGenreTable.genre_id == link.genre_id,
            )
            obj = (await session.execute(stmt)).scalar_one_or_none()
            if obj is None:
                session.add(
                    BookGenreTable(
                        book_id=link.book_id, genre_id=link.genre_id, confidence=link.confidence
                    )
                )
            elif link.confidence is not None:
                obj.confidence = link.confidence
            else:
                return
            await self._commit(session, f"book_genre {link.book_id}/{link.genre_id}")

    async def list_book_authors(self, book_id: str) -> List[Author]:
        stmt = (
            select(AuthorTable)
            .join(BookAuthorTable, BookAuthorTable.author_id == AuthorTable.id)
            .where(BookAuthorTable.book_id == book_id)
            .order_by(BookAuthorTable.position, BookAuthorTable.seq)
        )
        async with self._session() as session:
            return [_author(a) for a in (await session.execute(stmt)).scalars().all()]

    async def list_book_genres(self, book_id: str) -> List[Genre]:
        stmt = (
            select(GenreTable)
            .join(BookGenreTable, BookGenreTable.genre_id == GenreTable.id)
            .where(BookGenreTable.book_id == book_id)
            .order_by(BookGenreTable.seq)
        )
        async with self._session() as session:
            return [_genre(g) for g in (await session.execute(stmt)).scalars().all()]

    # Activity

    async def count_reactions(self, book_id: str, reaction: ReactionType) -> int:
        stmt = select(func.count()).select_from(ReactionTable).where(
            ReactionTable.book_id == book_id, ReactionTable.reaction == reaction
        )
        async with self._session() as session:
            return (await session.execute(stmt)).scalar_one()

    async def count_statuses(self, book_id: str, status: ReadingStatus) -> int:
        stmt = select(func.count()).select_from(StatusTable).where(
            StatusTable.book_id == book_id, StatusTable.status == status
        )
        async with self._session() as session:
            return (await session.execute(stmt)).scalar_one()

    async def upsert_reaction(
        self, user_id: str, book_id: str, reaction: ReactionType
    ) -> UserBookReaction:
        async with self._session() as session:
            if await session.get(BookTable, book_id) is None:
                raise NotFoundError(f"Book {book_id} not found")
            stmt = select(ReactionTable).where(
                ReactionTable.user_id == user_id, ReactionTable.book_id == book_id
            )
            obj = (await session.execute(stmt)).scalar_one_or_none()
            if obj is None:
                obj = ReactionTable(user_id=user_id, book_id=book_id, reaction=reaction)
                session.add(obj)
            else:
                obj.reaction = reaction
            await self._commit(session, f"reaction {user_id}/{book_id}")
            await session.refresh(obj)
            return UserBookReaction.model_validate(obj, from_attributes=True)

    async def upsert_status(
        self,
        user_id: str,
        book_id: str,
        status: ReadingStatus,
        started_at: Optional[datetime] = None,
        finished_at: Optional[datetime] = None,
    ) -> UserBookStatus:
        async with self._session() as session:
            if await session.get(BookTable, book_id) is None:
                raise NotFoundError(f"Book {book_id} not found")
            stmt = select(StatusTable).where(
                StatusTable.user_id == user_id, StatusTable.book_id == book_id
            )
            obj = (await session.execute(stmt)).scalar_one_or_none()
            if obj is None:
                obj = StatusTable(
                    user_id=user_id,
                    book_id=book_id,
                    status=status,
                    started_at=started_at,
                    finished_at=finished_at,
                )
                session.add(obj)
            else:
                obj.status = status
                if started_at is not None:
                    obj.started_at = started_at
                if finished_at is not None:
                    obj.finished_at = finished_at
            await self._commit(session, f"status {user_id}/{book_id}")
            await session.refresh(obj)
            return UserBookStatus.model_validate(obj, from_attributes=True)
