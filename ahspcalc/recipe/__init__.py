"""AHSP recipe engine: arithmetic, mutations, copy-on-write and recompute."""

from ahspcalc.recipe.calculator import RecipeTotals, compute_totals
from ahspcalc.recipe.materializer import Materializer, clone_into_scope
from ahspcalc.recipe.recompute import RecomputePropagator
from ahspcalc.recipe.service import RecipeService, build_breakdown

__all__ = [
    "RecipeTotals",
    "compute_totals",
    "Materializer",
    "clone_into_scope",
    "RecomputePropagator",
    "RecipeService",
    "build_breakdown",
]
