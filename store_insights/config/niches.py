"""
Static niche lookup data.

Niche labels, subcategory keyword tables, benchmark ranges, the keyword to
niche map, and theme keywords are kept as data in ``niches.json`` so they can
change without touching the matching code.
"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field


DEFAULT_CATALOG_PATH = Path(__file__).parent / "niches.json"

GENERAL = "general"


class SubcategoryEntry(BaseModel):
    """One subcategory inside a niche."""
    label: str
    keywords: list[str] = Field(default_factory=list)


class NicheEntry(BaseModel):
    """A niche with its subcategory table."""
    label: str
    subcategories: dict[str, SubcategoryEntry] = Field(default_factory=dict)


class NicheCatalog(BaseModel):
    """Typed view over the niche configuration file."""

    niches: dict[str, NicheEntry] = Field(default_factory=dict)
    benchmarks: dict[str, dict[str, Any]] = Field(default_factory=dict)
    niche_keywords: dict[str, str] = Field(default_factory=dict)
    theme_keywords: dict[str, list[str]] = Field(default_factory=dict)

    def niche_names(self, include_general: bool = False) -> list[str]:
        return [n for n in self.niches if include_general or n != GENERAL]

    def subcategories_for(self, niche: str) -> dict[str, SubcategoryEntry]:
        entry = self.niches.get(niche)
        return entry.subcategories if entry else {}

    def niche_label(self, niche: str) -> str:
        entry = self.niches.get(niche)
        return entry.label if entry else niche

    def benchmarks_for(self, niche: str, subcategory: Optional[str] = None) -> dict[str, Any]:
        """
        Benchmarks for a niche, overlaid with subcategory specifics.

        Unknown niches fall back to the general table.
        """
        table = self.benchmarks.get(niche) or self.benchmarks.get(GENERAL, {})
        result = dict(table.get("default", {}))
        if subcategory:
            result.update(table.get("subcategories", {}).get(subcategory, {}))
        return result


def load_niche_catalog(path: Optional[Path] = None) -> NicheCatalog:
    """Load a catalog from a JSON file."""
    source = Path(path) if path else DEFAULT_CATALOG_PATH
    return NicheCatalog.model_validate(json.loads(source.read_text(encoding="utf-8")))


@lru_cache
def get_niche_catalog() -> NicheCatalog:
    """Get the cached default catalog."""
    return load_niche_catalog()
