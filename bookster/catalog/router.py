"""
Route definitions for the catalogue API.

Endpoints under /api/catalog:
- GET  /books                    : tiered search (index, database, Open Library)
- GET  /books/search             : same as above
- GET  /books/{book_id}          : one canonical book
- POST /books                    : upsert a book (201 created, 200 updated)
- POST /books/{book_id}/reaction : like / dislike
- POST /books/{book_id}/status   : reading status

Callers are authenticated upstream; ``user_id`` arrives already trusted.
"""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from ..errors import CatalogError
from .schemas import (
    SearchBooksRequest,
    SearchBooksResponse,
    SetReactionRequest,
    SetReactionResponse,
    SetStatusRequest,
    SetStatusResponse,
    UpsertBookRequest,
    UpsertBookResponse,
)
from ..models import Book
from .service import CatalogService


router = APIRouter(prefix="/api/catalog", tags=["catalog"])


def get_catalog_service(request: Request) -> CatalogService:
    return request.app.state.catalog_service


def _http_error(exc: CatalogError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=str(exc))


def _split_slugs(values: List[str]) -> List[str]:
    # Accept both ?genre_slugs=a&genre_slugs=b and ?genre_slugs=a,b
    slugs: List[str] = []
    for value in values:
        slugs.extend(s.strip() for s in value.split(",") if s.strip())
    return slugs


@router.get("/books", response_model=SearchBooksResponse)
@router.get("/books/search", response_model=SearchBooksResponse)
async def search_books(
    q: Optional[str] = Query(default=None, description="Free-text query"),
    limit: Optional[int] = Query(default=None, description="Page size, capped at 100"),
    offset: Optional[int] = Query(default=None, description="Number of hits to skip"),
    language: Optional[str] = Query(default=None, description="Exact language code"),
    published_year_min: Optional[int] = Query(default=None),
    published_year_max: Optional[int] = Query(default=None),
    genre_slugs: List[str] = Query(default=[]),
    sort: Optional[str] = Query(default=None, description="e.g. published_year:desc"),
    service: CatalogService = Depends(get_catalog_service),
) -> SearchBooksResponse:
    request = SearchBooksRequest(
        query=q or "",
        limit=limit,
        offset=offset,
        language=language,
        published_year_min=published_year_min,
        published_year_max=published_year_max,
        genre_slugs=_split_slugs(genre_slugs),
        sort=sort,
    )
    try:
        return await service.search_books(request)
    except CatalogError as exc:
        raise _http_error(exc)


@router.get("/books/{book_id}", response_model=Book)
async def get_book(
    book_id: str,
    include_stats: bool = Query(default=True),
    service: CatalogService = Depends(get_catalog_service),
) -> Book:
    try:
        return await service.get_book(book_id, include_stats=include_stats)
    except CatalogError as exc:
        raise _http_error(exc)


@router.post("/books", response_model=UpsertBookResponse, status_code=201)
async def upsert_book(
    body: UpsertBookRequest,
    response: Response,
    service: CatalogService = Depends(get_catalog_service),
) -> UpsertBookResponse:
    # The HTTP surface re-indexes unless told otherwise.
    if "reindex_search_document" not in body.model_fields_set:
        body = body.model_copy(update={"reindex_search_document": True})
    try:
        result = await service.upsert_book(body)
    except CatalogError as exc:
        raise _http_error(exc)
    # 201 for a new book, 200 when an existing one was updated
    if not result.created:
        response.status_code = 200
    return result


@router.post("/books/{book_id}/reaction", response_model=SetReactionResponse)
async def set_reaction(
    book_id: str,
    body: SetReactionRequest,
    service: CatalogService = Depends(get_catalog_service),
) -> SetReactionResponse:
    try:
        record = await service.set_reaction(body.user_id, book_id, body.reaction)
    except CatalogError as exc:
        raise _http_error(exc)
    return SetReactionResponse(reaction=record)


@router.post("/books/{book_id}/status", response_model=SetStatusResponse)
async def set_status(
    book_id: str,
    body: SetStatusRequest,
    service: CatalogService = Depends(get_catalog_service),
) -> SetStatusResponse:
    try:
        record = await service.set_status(
            body.user_id,
            book_id,
            body.status,
            started_at=body.started_at,
            finished_at=body.finished_at,
        )
    except CatalogError as exc:
        raise _http_error(exc)
    return SetStatusResponse(status=record)
