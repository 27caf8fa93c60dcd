"""Pytest configuration and fixtures for AHSPCalc tests.

Each test gets its own SQLite database file (aiosqlite) with the schema
created from the models, plus service instances bound to it.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from ahspcalc.catalog.hsp import CatalogItemStore
from ahspcalc.catalog.master import MasterCatalog
from ahspcalc.config import AppConfig, DBConfig, reset_config
from ahspcalc.core.scope import GLOBAL, Scope
from ahspcalc.db.connection import create_session_factory, init_db, session_scope
from ahspcalc.db.models import HSPCategoryModel, HSPItemModel, MasterItemModel
from ahspcalc.recipe.recompute import RecomputePropagator
from ahspcalc.recipe.service import RecipeService


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    """Point the global configuration at a throwaway database."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'env.db'}")
    reset_config()
    yield
    reset_config()


@pytest.fixture
def app_config(tmp_path) -> AppConfig:
    return AppConfig(db=DBConfig(url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"))


@pytest_asyncio.fixture()
async def engine(app_config: AppConfig):
    engine = create_async_engine(app_config.db.url)
    await init_db(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def propagator(session_factory) -> RecomputePropagator:
    return RecomputePropagator(session_factory)


@pytest.fixture
def master_catalog(session_factory, propagator, app_config) -> MasterCatalog:
    return MasterCatalog(session_factory, propagator=propagator, config=app_config)


@pytest.fixture
def item_store(session_factory, app_config) -> CatalogItemStore:
    return CatalogItemStore(session_factory, config=app_config)


@pytest.fixture
def recipes(session_factory, app_config) -> RecipeService:
    return RecipeService(session_factory, config=app_config)


@dataclass
class Seeder:
    """Inserts rows directly, bypassing service validation."""

    session_factory: object

    async def category(self, name: str, scope: Scope = GLOBAL) -> HSPCategoryModel:
        category = HSPCategoryModel(scope=scope, name=name)
        async with session_scope(self.session_factory) as session:
            session.add(category)
        return category

    async def item(
        self,
        kode: str,
        category_id: UUID,
        scope: Scope = GLOBAL,
        deskripsi: str | None = None,
        satuan: str = "m2",
        harga: Decimal = Decimal("0"),
        is_deleted: bool = False,
    ) -> HSPItemModel:
        item = HSPItemModel(
            scope=scope,
            kode=kode,
            deskripsi=deskripsi or f"Pekerjaan {kode}",
            satuan=satuan,
            harga=harga,
            hsp_category_id=category_id,
            is_deleted=is_deleted,
        )
        async with session_scope(self.session_factory) as session:
            session.add(item)
        return item

    async def master(
        self,
        code: str,
        price: Decimal,
        type: str = "MATERIAL",
        scope: Scope = GLOBAL,
        name: str | None = None,
        unit: str = "unit",
    ) -> MasterItemModel:
        master = MasterItemModel(
            scope=scope,
            code=code,
            name=name or f"Master {code}",
            unit=unit,
            price=price,
            type=type,
        )
        async with session_scope(self.session_factory) as session:
            session.add(master)
        return master


@pytest.fixture
def seed(session_factory) -> Seeder:
    return Seeder(session_factory)
