"""Operational area synthesis on top of the administrative boundary tree.

Three patterns are supported: promoting a whole level-1 region, unioning
several level-2 boundaries into one custom zone, and promoting a single
level-2 boundary. Each definition succeeds or is skipped on its own.
"""
import json
import logging
import math
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Union

from pydantic import ValidationError
from shapely.geometry import Point
from shapely.geometry.base import BaseGeometry

from servicezones.config import get_settings
from servicezones.domain import (
    AdminDerivedGeometry,
    AreaRecord,
    BatchResult,
    BoundaryRecord,
    CustomGeometry,
)
from servicezones.exceptions import SkippableInputError
from servicezones.schemas.area import AreaDefinition, AreaKind
from servicezones.services import geometry
from servicezones.services.store_base import BoundaryStore
from servicezones.utils.audit import log_audit_event
from servicezones.utils.slug import AREA_SLUG_MAX_LENGTH, slugify

logger = logging.getLogger(__name__)

RADIUS_ROUNDING_METERS = 500


def load_area_definitions(path: str | Path) -> list[dict[str, Any]]:
    """Read a JSON list of area definitions (validated later, one by one)."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError(f"{path} must contain a JSON list of area definitions")
    return data


def area_slug(definition: AreaDefinition) -> str:
    """Deterministic slug for an area definition.

    Whole regions carry their display level as a suffix ("giza-governorate")
    so they do not collide with a same-named city or district.
    """
    if definition.slug:
        return slugify(definition.slug, AREA_SLUG_MAX_LENGTH)
    base = slugify(definition.name_en, AREA_SLUG_MAX_LENGTH)
    if definition.kind != AreaKind.WHOLE_REGION:
        return base
    suffix = slugify(definition.effective_display_level)
    if not suffix or base.endswith(f"-{suffix}") or base == suffix:
        return base
    return slugify(f"{base} {suffix}", AREA_SLUG_MAX_LENGTH)


def scaled_search_radius(region: Optional[BaseGeometry]) -> float:
    """Radius of the circle with the region's geodesic area, clamped and rounded."""
    settings = get_settings()
    area = geometry.geodesic_area_m2(region)
    if area <= 0:
        return settings.DEFAULT_SEARCH_RADIUS_METERS
    radius = math.sqrt(area / math.pi)
    radius = min(max(radius, settings.MIN_DEFAULT_SEARCH_RADIUS_METERS),
                 settings.MAX_DEFAULT_SEARCH_RADIUS_METERS)
    return float(round(radius / RADIUS_ROUNDING_METERS) * RADIUS_ROUNDING_METERS)


class AreaSynthesizer:
    """Creates OperationalArea rows from area definitions."""

    def __init__(self, store: BoundaryStore):
        self.store = store

    async def synthesize(
        self,
        definitions: Iterable[Union[AreaDefinition, Mapping[str, Any]]],
        force_reset: bool = False,
    ) -> BatchResult:
        """Create the operational areas described by ``definitions``.

        Without ``force_reset`` an area whose slug already exists is left
        alone, and a run where every slug exists is a no-op. With it, shops
        and areas are deleted first.
        """
        definitions = list(definitions)
        if force_reset and await self.store.count_areas():
            deleted = await self.store.reset(shops=True, areas=True)
            log_audit_event("operational_areas.reseed", details={"deleted": deleted})
            logger.info("Cleared operational areas for reseed: %s", deleted)

        taken = await self.store.area_slugs()
        result = BatchResult()
        already_present = 0

        for index, raw in enumerate(definitions):
            try:
                definition = self._validate(raw, index)
                slug = area_slug(definition)
                if not slug:
                    raise SkippableInputError("name produces an empty slug", definition.name_en)
                if slug in taken:
                    already_present += 1
                    raise SkippableInputError("operational area already exists", slug)
                area = await self._build(definition, slug)
                saved = await self.store.add_area(area)
            except SkippableInputError as exc:
                logger.warning("Skipping operational area %s: %s", exc.identifier, exc.reason)
                result.skip(exc.reason, exc.identifier)
                continue

            taken.add(saved.slug)
            result.inserted += 1
            logger.debug("Created operational area %s (%s)", saved.slug, saved.geometry_source.name)

        if definitions and already_present == len(definitions):
            logger.info("All %d operational areas already present; nothing to do", already_present)
            return BatchResult(noop=True)

        logger.info("Operational area synthesis: %s", result.summary())
        return result

    def _validate(self, raw, index: int) -> AreaDefinition:
        if isinstance(raw, AreaDefinition):
            return raw
        try:
            return AreaDefinition.model_validate(raw)
        except ValidationError as exc:
            name = raw.get("name_en") if isinstance(raw, Mapping) else None
            problems = "; ".join(err["msg"] for err in exc.errors())
            raise SkippableInputError(f"invalid definition: {problems}", name or f"#{index}") from exc

    async def _build(self, definition: AreaDefinition, slug: str) -> AreaRecord:
        if definition.kind == AreaKind.WHOLE_REGION:
            return await self._whole_region(definition, slug)
        if definition.kind == AreaKind.COMPOSITE:
            return await self._composite(definition, slug)
        return await self._direct(definition, slug)

    async def _lookup_one(self, definition: AreaDefinition, level: int) -> BoundaryRecord:
        code = definition.codes[0]
        found = await self.store.get_boundaries_by_codes(level, [code], definition.country_code)
        boundary = found.get(code)
        if boundary is None:
            raise SkippableInputError(f"level {level} boundary {code} not found", definition.name_en)
        return boundary

    async def _whole_region(self, definition: AreaDefinition, slug: str) -> AreaRecord:
        boundary = await self._lookup_one(definition, 1)
        return self._record(
            definition,
            slug,
            AdminDerivedGeometry(boundary_id=boundary.id),
            boundary.centroid or geometry.centroid_of(boundary.boundary),
            boundary.boundary,
        )

    async def _direct(self, definition: AreaDefinition, slug: str) -> AreaRecord:
        boundary = await self._lookup_one(definition, 2)
        return self._record(
            definition,
            slug,
            AdminDerivedGeometry(boundary_id=boundary.id),
            boundary.centroid or geometry.centroid_of(boundary.boundary),
            boundary.boundary,
        )

    async def _composite(self, definition: AreaDefinition, slug: str) -> AreaRecord:
        found = await self.store.get_boundaries_by_codes(2, definition.codes, definition.country_code)
        missing = [code for code in definition.codes if code not in found]
        if not found:
            raise SkippableInputError(
                f"none of the level 2 boundaries resolved (missing: {', '.join(missing)})",
                definition.name_en,
            )
        if missing:
            logger.warning("Composite area %s is missing level 2 boundaries: %s",
                           definition.name_en, ", ".join(missing))

        parts = [found[code] for code in definition.codes if code in found]
        merged = geometry.union(part.boundary for part in parts)
        if merged is None:
            raise SkippableInputError("union of the level 2 boundaries produced no geometry",
                                      definition.name_en)
        simplified = geometry.simplify(merged, geometry.custom_zone_tolerance())

        return self._record(
            definition,
            slug,
            CustomGeometry(
                boundary=merged,
                simplified_boundary=simplified,
                context_boundary_id=await self._context_boundary_id(definition, parts),
            ),
            geometry.centroid_of(merged),
            merged,
        )

    async def _context_boundary_id(
        self,
        definition: AreaDefinition,
        parts: list[BoundaryRecord],
    ) -> Optional[int]:
        if definition.context_code:
            found = await self.store.get_boundaries_by_codes(
                1, [definition.context_code], definition.country_code
            )
            context = found.get(definition.context_code)
            if context is None:
                logger.warning("Context boundary %s for %s not found",
                               definition.context_code, definition.name_en)
                return None
            return context.id
        parent_ids = {part.parent_id for part in parts}
        if len(parent_ids) == 1:
            return parent_ids.pop()
        return None

    def _record(
        self,
        definition: AreaDefinition,
        slug: str,
        area_geometry,
        centroid: Optional[Point],
        region: Optional[BaseGeometry],
    ) -> AreaRecord:
        if centroid is not None:
            latitude, longitude = centroid.y, centroid.x
        elif definition.fallback_latitude is not None:
            latitude, longitude = definition.fallback_latitude, definition.fallback_longitude
        else:
            raise SkippableInputError("no centroid available and no fallback supplied", definition.name_en)

        radius = definition.default_search_radius_meters or scaled_search_radius(region)
        return AreaRecord(
            name_en=definition.name_en,
            name_ar=definition.name_ar or definition.name_en,
            slug=slug,
            geometry=area_geometry,
            centroid_latitude=latitude,
            centroid_longitude=longitude,
            display_level=definition.effective_display_level,
            default_search_radius_meters=radius,
            default_map_zoom_level=definition.default_map_zoom_level,
            is_active=definition.is_active,
        )
