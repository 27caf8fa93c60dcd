"""Database layer for AHSPCalc with async SQLAlchemy."""

from ahspcalc.db.connection import get_session, init_db, session_scope
from ahspcalc.db.models import (
    AHSPComponentModel,
    AHSPRecipeModel,
    Base,
    HSPCategoryModel,
    HSPItemModel,
    MasterItemModel,
)

__all__ = [
    "Base",
    "MasterItemModel",
    "HSPCategoryModel",
    "HSPItemModel",
    "AHSPRecipeModel",
    "AHSPComponentModel",
    "get_session",
    "init_db",
    "session_scope",
]
