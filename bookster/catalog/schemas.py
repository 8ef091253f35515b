"""
Pydantic schema definitions for the catalog module.

Requests and responses for the search, upsert and activity operations.
Search requests keep the caller's raw values; clamping and defaulting
happen in the service so that every entry point (HTTP, promotion,
tests) goes through the same rules.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from ..models import (
    Book,
    ExternalSource,
    ReactionType,
    ReadingStatus,
    UserBookReaction,
    UserBookStatus,
)


class SearchBooksRequest(BaseModel):
    query: str = ""
    limit: Optional[int] = None
    offset: Optional[int] = None
    language: Optional[str] = None
    # 0 or negative means "no bound"
    published_year_min: Optional[int] = None
    published_year_max: Optional[int] = None
    genre_slugs: List[str] = Field(default_factory=list)
    sort: Optional[str] = None


class SearchBooksResponse(BaseModel):
    books: List[Book]
    total: int
    # Reserved for asynchronous imports; always false while external hits
    # are resolved inline.
    used_external_fallback: bool = False
    import_enqueued: bool = False


class UpsertAuthor(BaseModel):
    id: str = ""
    name: str
    sort_name: Optional[str] = None
    external_source: Optional[ExternalSource] = None
    external_id: Optional[str] = None
    role: Optional[str] = None
    position: int = 0


class UpsertGenre(BaseModel):
    id: str = ""
    name: str
    slug: str
    confidence: Optional[float] = None


class UpsertBookRequest(BaseModel):
    """Write request for a canonical book.

    Identity is resolved from ``external_source`` + ``external_id`` first,
    then ``id``. ``reindex_search_document`` controls the write-back into
    the search index.
    """

    id: Optional[str] = None
    title: str = ""
    subtitle: Optional[str] = None
    description: Optional[str] = None
    language: Optional[str] = None
    published_year: Optional[int] = None
    cover_image_url: Optional[str] = None
    external_source: Optional[ExternalSource] = None
    external_id: Optional[str] = None
    authors: List[UpsertAuthor] = Field(default_factory=list)
    genres: List[UpsertGenre] = Field(default_factory=list)
    reindex_search_document: bool = False


class UpsertBookResponse(BaseModel):
    book: Book
    created: bool


class SetReactionRequest(BaseModel):
    user_id: str
    reaction: ReactionType


class SetStatusRequest(BaseModel):
    user_id: str
    status: ReadingStatus
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


class SetReactionResponse(BaseModel):
    reaction: UserBookReaction


class SetStatusResponse(BaseModel):
    status: UserBookStatus
