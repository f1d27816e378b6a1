"""Builders for boundary features, area definitions and shops used across tests.

Layout (lon/lat degrees):
    EG01 "Giza"   31.0-31.5 x 30.0-30.5, split into EG0101, EG0102, EG0103 and EG0104
    EG02 "Suez"   31.5-32.0 x 30.0-30.5, with the single subregion EG0201
"""
from contextlib import asynccontextmanager

from servicezones.services.ingestion import BoundaryIngestor
from servicezones.services.synthesis import AreaSynthesizer


def square(min_lon, min_lat, size=0.25):
    max_lon, max_lat = min_lon + size, min_lat + size
    return {
        "type": "Polygon",
        "coordinates": [[
            [min_lon, min_lat],
            [max_lon, min_lat],
            [max_lon, max_lat],
            [min_lon, max_lat],
            [min_lon, min_lat],
        ]],
    }


def boundary_feature(level, code, name_en, geometry, parent_code=None, name_ar=None):
    properties = {
        f"ADM{level}_PCODE": code,
        f"ADM{level}_EN": name_en,
        f"ADM{level}_AR": name_ar or f"{name_en} (ar)",
    }
    if parent_code is not None:
        properties[f"ADM{level - 1}_PCODE"] = parent_code
    return {"type": "Feature", "properties": properties, "geometry": geometry}


def level1_features():
    return [
        boundary_feature(1, "EG01", "Giza", square(31.0, 30.0, 0.5)),
        boundary_feature(1, "EG02", "Suez", square(31.5, 30.0, 0.5)),
    ]


def level2_features():
    return [
        boundary_feature(2, "EG0101", "Dokki", square(31.0, 30.0), "EG01"),
        boundary_feature(2, "EG0102", "Agouza", square(31.25, 30.0), "EG01"),
        boundary_feature(2, "EG0103", "Imbaba", square(31.0, 30.25), "EG01"),
        boundary_feature(2, "EG0104", "Haram", square(31.25, 30.25), "EG01"),
        boundary_feature(2, "EG0201", "Ataqa", square(31.5, 30.0, 0.5), "EG02"),
    ]


def area_definitions():
    return [
        {"kind": "whole_region", "name_en": "Giza", "name_ar": "الجيزة", "codes": ["EG01"]},
        {
            "kind": "composite",
            "name_en": "Central Zone",
            "codes": ["EG0101", "EG0102", "EG0103"],
            "context_code": "EG01",
        },
        {"kind": "direct", "name_en": "East District", "codes": ["EG0201"]},
    ]


def shop_seed(name_en, lat, lon, area_slug, **extra):
    seed = {
        "name_en": name_en,
        "latitude": lat,
        "longitude": lon,
        "target_operational_area_slug": area_slug,
    }
    seed.update(extra)
    return seed


async def build_boundaries(store):
    ingestor = BoundaryIngestor(store)
    await ingestor.ingest_level(level1_features(), 1)
    await ingestor.ingest_level(level2_features(), 2)


async def build_world(store):
    """Boundaries plus the three operational areas: giza-governorate, central-zone, east-district."""
    await build_boundaries(store)
    await AreaSynthesizer(store).synthesize(area_definitions())


def store_factory(store):
    @asynccontextmanager
    async def factory():
        yield store
    return factory
