"""Configuration module for the Store Insights Pipeline."""

from store_insights.config.niches import NicheCatalog, load_niche_catalog
from store_insights.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
    "NicheCatalog",
    "load_niche_catalog",
]
