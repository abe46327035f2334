from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol
from urllib.parse import quote

from hear_and_there.core.models import EMPTY_SUMMARY, SummaryData
from hear_and_there.errors import ValidationError
from hear_and_there.storage.ttl_store import TTLStore

logger = logging.getLogger(__name__)

_KEY_PREFIX = "summary:"


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    cleaned = " ".join(value.split())
    return cleaned or None


@dataclass(frozen=True, slots=True)
class SummaryKey:
    country: str
    city: Optional[str] = None
    neighborhood: Optional[str] = None

    @classmethod
    def of(cls, country: Optional[str], city: Optional[str] = None, neighborhood: Optional[str] = None) -> "SummaryKey":
        """
        Build a validated key.

        Country is mandatory and a neighborhood requires its city. A violating
        combination raises ValidationError; it is never narrowed to a shorter key.
        """
        country_c, city_c, neighborhood_c = _clean(country), _clean(city), _clean(neighborhood)
        if country_c is None:
            raise ValidationError(
                f"Summary cache key requires a country. city={city!r} neighborhood={neighborhood!r}"
            )
        if neighborhood_c is not None and city_c is None:
            raise ValidationError(
                f"Summary cache key with a neighborhood requires a city. "
                f"country={country!r} neighborhood={neighborhood!r}"
            )
        return cls(country=country_c, city=city_c, neighborhood=neighborhood_c)

    @property
    def level(self) -> str:
        if self.neighborhood:
            return "neighborhood"
        if self.city:
            return "city"
        return "country"

    def as_string(self) -> str:
        parts = [self.country, self.city, self.neighborhood]
        # Parts are percent-escaped so "/" only ever separates levels.
        return "/".join(quote(p.lower(), safe=" ") for p in parts if p)


class SummarySource(Protocol):
    async def summarize(self, *, place_name: str, context: str) -> SummaryData:
        ...


class SummaryCache:
    """Hierarchical country/city/neighborhood summaries with a fixed retention window."""

    def __init__(self, *, store: TTLStore) -> None:
        self._store = store

    def read(
        self,
        country: Optional[str],
        city: Optional[str] = None,
        neighborhood: Optional[str] = None,
    ) -> Optional[SummaryData]:
        key = SummaryKey.of(country, city, neighborhood)
        raw = self._store.get(_KEY_PREFIX + key.as_string())
        if raw is None:
            logger.debug("Summary cache miss. key=%s", key.as_string())
            return None
        logger.debug("Summary cache hit. key=%s", key.as_string())
        return SummaryData.from_dict(raw)

    def write(
        self,
        country: Optional[str],
        city: Optional[str],
        neighborhood: Optional[str],
        value: SummaryData,
    ) -> SummaryKey:
        key = SummaryKey.of(country, city, neighborhood)
        self._store.set(_KEY_PREFIX + key.as_string(), value.to_dict())
        logger.debug("Summary cached. key=%s level=%s", key.as_string(), key.level)
        return key

    async def get_or_generate(
        self,
        key: SummaryKey,
        *,
        generator: SummarySource,
        place_name: str,
        context: str,
    ) -> SummaryData:
        """Read-through: return the cached summary or generate, store and return it."""
        cached = self.read(key.country, key.city, key.neighborhood)
        if cached is not None and cached.summary:
            return cached
        generated = await generator.summarize(place_name=place_name, context=context)
        if generated.summary:
            self.write(key.country, key.city, key.neighborhood, generated)
        return generated


async def area_summary(
    cache: SummaryCache,
    generator: SummarySource,
    *,
    country: Optional[str],
    city: Optional[str],
    neighborhood: Optional[str] = None,
) -> SummaryData:
    """
    City summary, or neighborhood summary when `neighborhood` is given, through the cache.

    A location without a city, an invalid key or a failing generator yields an empty summary.
    """
    if not city:
        return EMPTY_SUMMARY
    try:
        key = SummaryKey.of(country, city, neighborhood)
    except ValidationError as exc:
        logger.warning("Skipping area summary with an invalid key. error=%s", exc)
        return EMPTY_SUMMARY
    if key.neighborhood:
        place_name = f"{key.neighborhood}, {key.city}, {key.country}"
        context = f"A neighborhood of {key.city}, {key.country}"
    else:
        place_name = f"{key.city}, {key.country}"
        context = f"A city in {key.country}"
    try:
        return await cache.get_or_generate(key, generator=generator, place_name=place_name, context=context)
    except Exception as exc:
        logger.warning("Area summary generation failed. key=%s error=%s", key.as_string(), exc)
        return EMPTY_SUMMARY
