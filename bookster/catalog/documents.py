"""
Search document codec.

The search index stores a flat, camelCase projection of a hydrated
``Book``. The projection drops the timestamps of nested authors and
genres, and the external source and id of nested authors. Decoding a
document therefore yields nested entities without them. Everything
else survives the round trip.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..models import Author, Book, ExternalSource, Genre


BOOKS_INDEX = "books"

# Typo tolerance is left at the index defaults.
BOOKS_INDEX_SETTINGS: Dict[str, List[str]] = {
    "searchableAttributes": [
        "title",
        "subtitle",
        "primaryAuthor",
        "authorNames",
        "description",
    ],
    "filterableAttributes": ["genreSlugs", "language", "publishedYear"],
    "sortableAttributes": [
        "publishedYear",
        "likeCount",
        "readingCount",
        "readCount",
        "createdAt",
    ],
}


class _DocumentModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DocumentAuthor(_DocumentModel):
    id: str
    name: str
    sort_name: str = ""


class DocumentGenre(_DocumentModel):
    id: str
    name: str
    slug: str


class SearchDocument(_DocumentModel):
    id: str
    title: str
    subtitle: str = ""
    description: str = ""
    language: str = ""
    published_year: int = 0
    cover_image_url: str = ""
    external_source: str = ""
    external_id: str = ""
    authors: List[DocumentAuthor] = Field(default_factory=list)
    genres: List[DocumentGenre] = Field(default_factory=list)
    primary_author: str = ""
    author_names: List[str] = Field(default_factory=list)
    genre_slugs: List[str] = Field(default_factory=list)
    like_count: int = 0
    dislike_count: int = 0
    want_count: int = 0
    reading_count: int = 0
    read_count: int = 0
    dnf_count: int = 0
    created_at: str = ""
    updated_at: str = ""


def _timestamp(value: Optional[datetime]) -> str:
    return value.isoformat() if value else ""


def _parse_timestamp(value: str) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def book_to_document(book: Book) -> SearchDocument:
    author_names = book.author_names or [a.name for a in book.authors]
    genre_slugs = book.genre_slugs or [g.slug for g in book.genres]
    return SearchDocument(
        id=book.id,
        title=book.title,
        subtitle=book.subtitle or "",
        description=book.description or "",
        language=book.language or "",
        published_year=book.published_year or 0,
        cover_image_url=book.cover_image_url or "",
        external_source=book.external_source.value if book.external_source else "",
        external_id=book.external_id or "",
        authors=[
            DocumentAuthor(id=a.id, name=a.name, sort_name=a.sort_name or "")
            for a in book.authors
        ],
        genres=[DocumentGenre(id=g.id, name=g.name, slug=g.slug) for g in book.genres],
        primary_author=book.primary_author or (author_names[0] if author_names else ""),
        author_names=list(author_names),
        genre_slugs=list(genre_slugs),
        like_count=book.like_count,
        dislike_count=book.dislike_count,
        want_count=book.want_count,
        reading_count=book.reading_count,
        read_count=book.read_count,
        dnf_count=book.dnf_count,
        created_at=_timestamp(book.created_at),
        updated_at=_timestamp(book.updated_at),
    )


def document_to_book(document: SearchDocument) -> Book:
    try:
        source: Optional[ExternalSource] = ExternalSource(document.external_source)
    except ValueError:
        source = None
    return Book(
        id=document.id,
        title=document.title,
        subtitle=document.subtitle or None,
        description=document.description or None,
        language=document.language or None,
        published_year=document.published_year or None,
        cover_image_url=document.cover_image_url or None,
        external_source=source,
        external_id=document.external_id or None,
        authors=[
            Author(id=a.id, name=a.name, sort_name=a.sort_name or None)
            for a in document.authors
        ],
        genres=[Genre(id=g.id, name=g.name, slug=g.slug) for g in document.genres],
        primary_author=document.primary_author,
        author_names=list(document.author_names),
        genre_slugs=list(document.genre_slugs),
        like_count=document.like_count,
        dislike_count=document.dislike_count,
        want_count=document.want_count,
        reading_count=document.reading_count,
        read_count=document.read_count,
        dnf_count=document.dnf_count,
        created_at=_parse_timestamp(document.created_at),
        updated_at=_parse_timestamp(document.updated_at),
    )


def encode(book: Book) -> Dict[str, Any]:
    """Book -> index payload (camelCase keys)."""
    return book_to_document(book).model_dump(by_alias=True)


def decode(hit: Mapping[str, Any]) -> Book:
    """Index hit -> Book. Extra keys added by the engine are ignored."""
    return document_to_book(SearchDocument.model_validate(hit))
