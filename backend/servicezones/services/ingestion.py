"""Administrative boundary ingestion from GeoJSON feature collections.

Level 1 features become top-level regions. Level 2 features are linked to the
level-1 row named by their parent code, so level 1 must be ingested first.
Unusable features are skipped and counted; a batch never aborts on them.
"""
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

from servicezones.config import get_settings
from servicezones.domain import BatchResult, BoundaryRecord
from servicezones.exceptions import SkippableInputError
from servicezones.services import geometry
from servicezones.services.store_base import BoundaryStore
from servicezones.utils.audit import log_audit_event

logger = logging.getLogger(__name__)

NAME_MAX_LENGTH = 150
CODE_MAX_LENGTH = 50


@dataclass(frozen=True)
class FeatureSchema:
    """Property keys to read from each feature, tried in order."""
    name_en_keys: tuple[str, ...]
    name_ar_keys: tuple[str, ...]
    code_keys: tuple[str, ...]
    parent_code_keys: tuple[str, ...] = ()

    @classmethod
    def for_level(cls, level: int) -> "FeatureSchema":
        """OCHA COD-AB keys (ADM1_EN, ADM1_PCODE, ...) with generic fallbacks."""
        parent_keys = (f"ADM{level - 1}_PCODE", "parent_code") if level > 1 else ()
        return cls(
            name_en_keys=(f"ADM{level}_EN", "name_en", "NAME_EN", "name"),
            name_ar_keys=(f"ADM{level}_AR", "name_ar", "NAME_AR"),
            code_keys=(f"ADM{level}_PCODE", "code", "official_code"),
            parent_code_keys=parent_keys,
        )


def _first(properties: Mapping[str, Any], keys: Iterable[str]) -> Optional[str]:
    for key in keys:
        value = properties.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def load_feature_collection(path: str | Path) -> list[dict]:
    """Read a GeoJSON file and return its features."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    kind = data.get("type") if isinstance(data, dict) else None
    if kind == "FeatureCollection":
        return list(data.get("features") or [])
    if kind == "Feature":
        return [data]
    raise ValueError(f"{path} is not a GeoJSON Feature or FeatureCollection")


def resolve_parent_code(
    code: str,
    declared_parent: Optional[str],
    parent_codes: Iterable[str],
) -> Optional[str]:
    """Pick the level-1 code a level-2 feature belongs to.

    A declared parent code wins. Without one, the longest known parent code
    that prefixes the child's own code is used.
    """
    known = set(parent_codes)
    if declared_parent:
        return declared_parent if declared_parent in known else None
    candidates = [p for p in known if code.startswith(p) and p != code]
    if not candidates:
        return None
    return max(candidates, key=len)


class BoundaryIngestor:
    """Builds the administrative boundary tree one level at a time."""

    def __init__(self, store: BoundaryStore, country_code: Optional[str] = None):
        self.store = store
        self.country_code = country_code or get_settings().DEFAULT_COUNTRY_CODE

    async def ingest_level(
        self,
        features: Iterable[Mapping[str, Any]],
        level: int,
        force_replace: bool = False,
        schema: Optional[FeatureSchema] = None,
    ) -> BatchResult:
        """Ingest one administrative level.

        Args:
            features: GeoJSON feature mappings
            level: 1 for regions, 2 for sub-regions
            force_replace: delete existing rows (and everything depending on
                them) before ingesting
            schema: property keys to read; defaults to FeatureSchema.for_level

        Returns:
            BatchResult with inserted and skipped counts
        """
        if level not in (1, 2):
            raise ValueError(f"Unsupported administrative level: {level}")
        schema = schema or FeatureSchema.for_level(level)

        existing = await self.store.count_boundaries(level, self.country_code)
        if existing and not force_replace:
            logger.info(
                "Level %d boundaries for %s already present (%d rows); skipping ingestion",
                level, self.country_code, existing,
            )
            return BatchResult(noop=True)
        if existing:
            await self._clear_level(level)

        parent_ids: dict[str, int] = {}
        if level == 2:
            parents = await self.store.list_boundaries(level=1, active_only=False)
            parent_ids = {
                b.official_code: b.id for b in parents
                if b.country_code == self.country_code and b.official_code
            }
            if not parent_ids:
                logger.warning("No level 1 boundaries for %s; every level 2 feature will be skipped",
                               self.country_code)

        result = BatchResult()
        records: list[BoundaryRecord] = []
        seen_codes: set[str] = set()
        for index, feature in enumerate(features):
            try:
                record = self._build_record(feature, level, schema, parent_ids, index)
                if record.official_code in seen_codes:
                    raise SkippableInputError("duplicate official code in batch", record.official_code)
            except SkippableInputError as exc:
                logger.warning("Skipping level %d feature %s: %s", level, exc.identifier, exc.reason)
                result.skip(exc.reason, exc.identifier)
                continue
            seen_codes.add(record.official_code)
            records.append(record)

        if records:
            stored = await self.store.add_boundaries(records)
            result.inserted = len(stored)

        logger.info("Level %d boundary ingestion for %s: %s", level, self.country_code, result.summary())
        return result

    async def _clear_level(self, level: int) -> None:
        # Everything below the replaced level goes too, children first
        levels = (2, 1) if level == 1 else (2,)
        deleted = await self.store.reset(
            shops=True, stats=True, areas=True,
            boundary_levels=levels, country_code=self.country_code,
        )
        log_audit_event("boundaries.reseed", details={"level": level, "deleted": deleted})
        logger.info("Cleared data for level %d reseed: %s", level, deleted)

    def _build_record(
        self,
        feature: Mapping[str, Any],
        level: int,
        schema: FeatureSchema,
        parent_ids: Mapping[str, int],
        index: int,
    ) -> BoundaryRecord:
        if not isinstance(feature, Mapping):
            raise SkippableInputError("feature is not an object", f"#{index}")
        properties = feature.get("properties") or {}

        code = _first(properties, schema.code_keys)
        identifier = code or f"#{index}"
        if not code:
            raise SkippableInputError("missing official code", identifier)
        if len(code) > CODE_MAX_LENGTH:
            raise SkippableInputError(f"official code longer than {CODE_MAX_LENGTH} characters", identifier)

        name_en = _first(properties, schema.name_en_keys)
        name_ar = _first(properties, schema.name_ar_keys)
        if not name_en and not name_ar:
            raise SkippableInputError("missing name", identifier)
        name_en = (name_en or name_ar)[:NAME_MAX_LENGTH]
        name_ar = (name_ar or name_en)[:NAME_MAX_LENGTH]

        parent_id = None
        if level == 2:
            declared = _first(properties, schema.parent_code_keys)
            parent_code = resolve_parent_code(code, declared, parent_ids.keys())
            if parent_code is None:
                missing = declared or "derived from code"
                raise SkippableInputError(f"parent boundary not found ({missing})", identifier)
            parent_id = parent_ids[parent_code]

        polygonal = geometry.repair(geometry.from_geojson(feature.get("geometry")))
        if polygonal is None:
            raise SkippableInputError("missing or non-polygonal geometry", identifier)
        detailed = geometry.normalize(polygonal)
        simplified = geometry.simplify(detailed, geometry.tolerance_for_level(level))

        return BoundaryRecord(
            name_en=name_en,
            name_ar=name_ar,
            admin_level=level,
            official_code=code,
            country_code=self.country_code,
            parent_id=parent_id,
            boundary=detailed,
            simplified_boundary=simplified,
            centroid=geometry.centroid_of(detailed),
        )
