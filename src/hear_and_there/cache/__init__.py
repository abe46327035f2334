"""Cache-aside datasets: points of interest, area summaries and tour suggestions."""

from hear_and_there.cache.geo_index import GeoPointIndex, PoiHit
from hear_and_there.cache.suggestions import TourSuggestionCache
from hear_and_there.cache.summary_cache import SummaryCache, SummaryKey, area_summary

__all__ = ["GeoPointIndex", "PoiHit", "SummaryCache", "SummaryKey", "TourSuggestionCache", "area_summary"]
