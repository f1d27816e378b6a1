import pytest
from sqlalchemy.dialects import postgresql

from servicezones.domain import ShopCategory, ShopFilter
from servicezones.models import Shop
from servicezones.services import store_postgis
from servicezones.services.store_postgis import (
    PostGISBoundaryStore,
    area_containing_statement,
    shop_search_statements,
)


def sql(stmt):
    return str(stmt.compile(dialect=postgresql.dialect()))


def test_radius_search_orders_and_pages_by_distance_in_sql():
    page, count = shop_search_statements(
        ShopFilter(area_id=3, category=ShopCategory.CAR_WASH, name="spa", services=["wax"]),
        sort="distance_asc",
        offset=20,
        limit=10,
        near=(30.1, 31.1, 2000.0),
    )
    page_sql = sql(page)
    count_sql = sql(count)

    assert "ST_DWithin(shops.location, CAST(ST_SetSRID(ST_MakePoint(" in page_sql
    assert "AS geography)" in page_sql
    assert "ST_Distance(shops.location" in page_sql
    order_by = page_sql[page_sql.index("ORDER BY"):]
    assert "shops.id" in order_by
    assert "LIMIT" in order_by and "OFFSET" in order_by
    filters = (
        "shops.operational_area_id",
        "shops.category",
        "shops.name_en ILIKE",
        "shops.services_offered ILIKE",
    )
    for clause in filters:
        assert clause in page_sql
        assert clause in count_sql

    assert "count(shops.id)" in count_sql
    assert "ST_DWithin" in count_sql
    assert "ORDER BY" not in count_sql
    assert "LIMIT" not in count_sql


def test_name_sort_is_case_insensitive_with_id_tie_break():
    ascending, _ = shop_search_statements(ShopFilter(area_id=1), sort="name_asc", limit=10)
    descending, _ = shop_search_statements(ShopFilter(area_id=1), sort="name_desc", limit=10)

    assert "ORDER BY lower(shops.name_en), shops.id" in sql(ascending)
    assert "ORDER BY lower(shops.name_en) DESC, shops.id" in sql(descending)
    assert "ST_DWithin" not in sql(ascending)


def test_unbounded_listing_has_no_limit():
    page, _ = shop_search_statements(ShopFilter())

    assert "LIMIT" not in sql(page)


def test_distance_sort_without_a_point_is_rejected():
    with pytest.raises(ValueError):
        shop_search_statements(ShopFilter(), sort="distance_asc")


def test_containing_area_picks_smallest_covering_geometry():
    area_sql = sql(area_containing_statement(30.1, 31.1))

    assert "LEFT OUTER JOIN administrative_boundaries" in area_sql
    geometry = "coalesce(operational_areas.custom_boundary, administrative_boundaries.boundary)"
    assert f"ST_Covers({geometry}, CAST(" in area_sql
    assert f"ORDER BY ST_Area({geometry}), operational_areas.id" in area_sql
    assert "LIMIT" in area_sql


def test_viewport_cast_matches_expression_index():
    assert sql(store_postgis._as_geometry(Shop.location)) == "CAST(shops.location AS geometry)"


class FakeResult:
    def __init__(self, value):
        self.value = value

    def scalar_one(self):
        return self.value


class CountingSession:
    def __init__(self, total):
        self.total = total
        self.statements = []

    async def execute(self, stmt):
        self.statements.append(stmt)
        return FakeResult(self.total)


@pytest.mark.anyio
async def test_page_past_the_end_skips_the_row_query():
    session = CountingSession(total=5)

    page = await PostGISBoundaryStore(session).search_shops(ShopFilter(), offset=20, limit=10)

    assert page.items == []
    assert page.total_count == 5
    assert len(session.statements) == 1
