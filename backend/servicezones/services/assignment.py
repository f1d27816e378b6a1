"""Binding shops to operational areas and allocating per-area slugs."""
import dataclasses
import json
import logging
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Union

from pydantic import ValidationError

from servicezones.domain import BatchResult, ShopCategory, ShopRecord
from servicezones.exceptions import (
    AreaNotFoundError,
    ConcurrencyConflictError,
    SkippableInputError,
    SlugConflictError,
)
from servicezones.schemas.shop import ShopSeed
from servicezones.services.store_base import BoundaryStore
from servicezones.utils.slug import SHOP_SLUG_MAX_LENGTH, composite_shop_slug, next_free_slug, slugify

logger = logging.getLogger(__name__)


def load_shop_seeds(path: str | Path) -> list[dict[str, Any]]:
    """Read a JSON list of shop source records."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError(f"{path} must contain a JSON list of shops")
    return data


class AreaAssigner:
    """Assigns shops to the operational area named by their target slug."""

    def __init__(self, store: BoundaryStore):
        self.store = store
        # Slugs handed out earlier in the current batch, per area id
        self._reserved: dict[int, set[str]] = {}

    async def assign_shop(self, shop: ShopSeed, target_area_slug: Optional[str] = None) -> ShopRecord:
        """Bind a shop to its area and store it with an area-unique slug.

        Raises:
            AreaNotFoundError: no active area has the requested slug
            ConcurrencyConflictError: the slug was taken concurrently twice in a row
        """
        requested = (target_area_slug or shop.target_operational_area_slug).strip().lower()
        area = await self.store.get_area_by_slug(requested)
        if area is None:
            raise AreaNotFoundError(requested, await self.store.area_slugs())

        base = slugify(shop.slug or shop.name_en, SHOP_SLUG_MAX_LENGTH) or "shop"
        composite = composite_shop_slug(base, area.slug)
        reserved = self._reserved.setdefault(area.id, set())

        taken = await self.store.shop_slugs_in_area(area.id) | reserved
        record = ShopRecord(
            name_en=shop.name_en,
            name_ar=shop.name_ar or shop.name_en,
            latitude=shop.latitude,
            longitude=shop.longitude,
            operational_area_id=area.id,
            category=ShopCategory.parse(shop.category),
            slug=next_free_slug(composite, taken),
            description=shop.description,
            address=shop.address,
            phone_number=shop.phone_number,
            services_offered=shop.services_offered,
            opening_hours=shop.opening_hours,
            logo_url=shop.logo_url,
        )

        try:
            saved = await self.store.add_shop(record)
        except SlugConflictError:
            logger.warning("Slug %s was taken concurrently in area %s; retrying with a suffix",
                           record.slug, area.slug)
            taken = await self.store.shop_slugs_in_area(area.id) | reserved | {record.slug}
            record = dataclasses.replace(record, slug=next_free_slug(composite, taken))
            try:
                saved = await self.store.add_shop(record)
            except SlugConflictError as exc:
                raise ConcurrencyConflictError(
                    f"Could not allocate a unique slug for '{shop.name_en}' in area '{area.slug}'"
                ) from exc

        reserved.add(saved.slug)
        return saved

    async def assign_batch(self, shops: Iterable[Union[ShopSeed, Mapping[str, Any]]]) -> BatchResult:
        """Assign a batch of shops; unusable records are skipped and counted."""
        result = BatchResult()
        try:
            await self._assign_all(shops, result)
        finally:
            self._reserved.clear()

        logger.info("Shop assignment: %s", result.summary())
        return result

    async def _assign_all(self, shops, result: BatchResult) -> None:
        for index, raw in enumerate(shops):
            try:
                seed = self._validate(raw, index)
                await self.assign_shop(seed)
            except SkippableInputError as exc:
                logger.warning("Skipping shop %s: %s", exc.identifier, exc.reason)
                result.skip(exc.reason, exc.identifier)
            except AreaNotFoundError as exc:
                logger.warning("Skipping shop %s: area '%s' not found (known slugs: %s)",
                               seed.name_en, exc.slug, ", ".join(exc.known_slugs) or "none")
                result.skip(f"operational area '{exc.slug}' not found", seed.name_en)
            except ConcurrencyConflictError as exc:
                logger.error("Skipping shop %s: %s", seed.name_en, exc)
                result.skip("slug conflict persisted after retry", seed.name_en)
            else:
                result.inserted += 1

    def _validate(self, raw, index: int) -> ShopSeed:
        if isinstance(raw, ShopSeed):
            return raw
        try:
            return ShopSeed.model_validate(raw)
        except ValidationError as exc:
            name = raw.get("name_en") if isinstance(raw, Mapping) else None
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
            )
            raise SkippableInputError(f"invalid shop record: {problems}", name or f"#{index}") from exc
