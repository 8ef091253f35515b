# bookster/main.py
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .catalog import catalog_router
from .catalog.openlibrary_service import OpenLibraryService
from .catalog.search_index import MeilisearchIndex
from .catalog.service import CatalogService
from .catalog.sql_store import SqlCatalogStore
from .catalog.store import InMemoryCatalogStore
from .config import Settings, get_settings


logger = logging.getLogger(__name__)


async def build_catalog_service(settings: Settings) -> CatalogService:
    """Wire the gateways described by ``settings`` into a CatalogService."""
    if settings.database_url:
        store = SqlCatalogStore.from_url(settings.database_url)
        await store.create_schema()
    else:
        logger.warning("No database configured, using the in-memory catalog store")
        store = InMemoryCatalogStore()
    index = MeilisearchIndex.from_url(
        settings.meilisearch_url,
        settings.meilisearch_api_key,
        index_name=settings.books_index,
        timeout=settings.http_timeout,
    )
    external = OpenLibraryService(
        base_url=settings.open_library_url,
        user_agent=settings.open_library_user_agent,
        timeout=settings.http_timeout,
        limit=settings.open_library_limit,
    )
    return CatalogService(
        store,
        index,
        external,
        default_limit=settings.default_limit,
        max_limit=settings.max_limit,
        promote_all_external_results=settings.promote_all_external_results,
    )


def create_app(
    service: Optional[CatalogService] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = service is None
        catalog = service if service is not None else await build_catalog_service(settings)
        app.state.catalog_service = catalog
        await catalog.ensure_index_settings()
        try:
            yield
        finally:
            if owned:
                await catalog.close()
                if isinstance(catalog.store, SqlCatalogStore):
                    await catalog.store.close()

    app = FastAPI(
        title="Bookster catalog",
        description=(
            "Book search backed by a search index, a relational catalog "
            "and Open Library as a last resort."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    @app.get("/")
    def health_check():
        return {"status": "ok"}

    app.include_router(catalog_router)
    return app


app = create_app()
