"""Settings and service wiring."""
import pytest

from bookster.catalog.search_index import MeilisearchIndex
from bookster.catalog.sql_store import SqlCatalogStore
from bookster.catalog.store import InMemoryCatalogStore
from bookster.config import Settings
from bookster.main import build_catalog_service


def test_settings_defaults(monkeypatch):
    monkeypatch.delenv("BOOKSTER_DATABASE_URL", raising=False)

    settings = Settings(_env_file=None)

    assert settings.books_index == "books"
    assert settings.default_limit == 20
    assert settings.max_limit == 100
    assert settings.promote_all_external_results is False
    assert settings.database_url is None


def test_settings_read_prefixed_environment(monkeypatch):
    monkeypatch.setenv("BOOKSTER_MEILISEARCH_URL", "http://search:7700")
    monkeypatch.setenv("BOOKSTER_PROMOTE_ALL_EXTERNAL_RESULTS", "true")
    monkeypatch.setenv("BOOKSTER_MAX_LIMIT", "50")

    settings = Settings(_env_file=None)

    assert settings.meilisearch_url == "http://search:7700"
    assert settings.promote_all_external_results is True
    assert settings.max_limit == 50


@pytest.mark.asyncio
async def test_build_service_without_database():
    service = await build_catalog_service(
        Settings(_env_file=None, database_url=None, promote_all_external_results=True, max_limit=30)
    )

    assert isinstance(service.store, InMemoryCatalogStore)
    assert isinstance(service.index, MeilisearchIndex)
    assert service.promote_all_external_results is True
    assert service.max_limit == 30
    await service.close()


@pytest.mark.asyncio
async def test_build_service_with_database(tmp_path):
    service = await build_catalog_service(
        Settings(_env_file=None, database_url=f"sqlite+aiosqlite:///{tmp_path}/catalog.db")
    )

    assert isinstance(service.store, SqlCatalogStore)
    assert await service.store.get_book("missing") is None
    await service.close()
    await service.store.close()
