# bookster/models.py
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class ExternalSource(str, Enum):
    OPEN_LIBRARY = "OPEN_LIBRARY"
    GOOGLE_BOOKS = "GOOGLE_BOOKS"
    OTHER = "OTHER"


class ReactionType(str, Enum):
    LIKE = "LIKE"
    DISLIKE = "DISLIKE"


class ReadingStatus(str, Enum):
    WANT = "WANT"
    READING = "READING"
    READ = "READ"
    DNF = "DNF"


class Author(BaseModel):
    id: str
    name: str
    sort_name: Optional[str] = None
    external_source: Optional[ExternalSource] = None
    external_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Genre(BaseModel):
    id: str
    name: str
    slug: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class BookAuthorLink(BaseModel):
    book_id: str
    author_id: str
    role: Optional[str] = None
    position: int = 0


class BookGenreLink(BaseModel):
    book_id: str
    genre_id: str
    confidence: Optional[float] = None


class BookRow(BaseModel):
    """Scalar columns of a canonical book, without joins or counters."""

    id: str
    title: str
    subtitle: Optional[str] = None
    description: Optional[str] = None
    language: Optional[str] = None
    published_year: Optional[int] = None
    cover_image_url: Optional[str] = None
    external_source: Optional[ExternalSource] = None
    external_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ActivityCounters(BaseModel):
    like_count: int = 0
    dislike_count: int = 0
    want_count: int = 0
    reading_count: int = 0
    read_count: int = 0
    dnf_count: int = 0


class Book(BookRow, ActivityCounters):
    """A hydrated book: scalar columns, ordered authors, genres and counters.

    ``primary_author``, ``author_names`` and ``genre_slugs`` are
    denormalized copies of the joins, kept so that the search document
    and API clients do not have to walk the nested lists.
    """

    authors: List[Author] = Field(default_factory=list)
    genres: List[Genre] = Field(default_factory=list)
    primary_author: str = ""
    author_names: List[str] = Field(default_factory=list)
    genre_slugs: List[str] = Field(default_factory=list)


class UserBookReaction(BaseModel):
    user_id: str
    book_id: str
    reaction: ReactionType
    created_at: datetime
    updated_at: datetime


class UserBookStatus(BaseModel):
    user_id: str
    book_id: str
    status: ReadingStatus
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
