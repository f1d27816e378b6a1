"""initial service zones schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from geoalchemy2 import Geography


# revision identifiers, used by Alembic.
revision: str = '0001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _geography(kind: str) -> Geography:
    # GIST indexes are created explicitly below
    return Geography(kind, srid=4326, spatial_index=False)


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS postgis")

    op.create_table(
        'administrative_boundaries',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name_en', sa.String(length=150), nullable=False),
        sa.Column('name_ar', sa.String(length=150), nullable=False),
        sa.Column('admin_level', sa.Integer(), nullable=False),
        sa.Column('parent_id', sa.Integer(), nullable=True),
        sa.Column('country_code', sa.String(length=10), nullable=True),
        sa.Column('official_code', sa.String(length=50), nullable=True),
        sa.Column('boundary', _geography('MULTIPOLYGON'), nullable=True),
        sa.Column('simplified_boundary', _geography('MULTIPOLYGON'), nullable=True),
        sa.Column('centroid', _geography('POINT'), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['parent_id'], ['administrative_boundaries.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint(
            'admin_level', 'country_code', 'official_code',
            name='uq_administrative_boundaries_level_country_code',
        ),
    )
    op.create_index('ix_administrative_boundaries_admin_level', 'administrative_boundaries', ['admin_level'])
    op.create_index('ix_administrative_boundaries_country_code', 'administrative_boundaries', ['country_code'])
    op.create_index('ix_administrative_boundaries_parent_id', 'administrative_boundaries', ['parent_id'])
    op.create_index('ix_administrative_boundaries_is_active', 'administrative_boundaries', ['is_active'])
    for column in ('boundary', 'simplified_boundary', 'centroid'):
        op.create_index(
            f'idx_administrative_boundaries_{column}', 'administrative_boundaries', [column],
            postgresql_using='gist',
        )
    # Viewport queries cast to geometry for the bounding-box operator
    op.execute(
        "CREATE INDEX idx_administrative_boundaries_boundary_geom "
        "ON administrative_boundaries USING gist ((boundary::geometry))"
    )

    op.create_table(
        'admin_area_shop_stats',
        sa.Column('administrative_boundary_id', sa.Integer(), nullable=False),
        sa.Column('shop_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(
            ['administrative_boundary_id'], ['administrative_boundaries.id'], ondelete='CASCADE'
        ),
        sa.PrimaryKeyConstraint('administrative_boundary_id'),
    )

    op.create_table(
        'operational_areas',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name_en', sa.String(length=150), nullable=False),
        sa.Column('name_ar', sa.String(length=150), nullable=False),
        sa.Column('slug', sa.String(length=150), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('display_level', sa.String(length=50), nullable=True),
        sa.Column('centroid_latitude', sa.Float(), nullable=False),
        sa.Column('centroid_longitude', sa.Float(), nullable=False),
        sa.Column('default_search_radius_meters', sa.Float(), nullable=True),
        sa.Column('default_map_zoom_level', sa.Integer(), nullable=True),
        sa.Column('geometry_source', sa.SmallInteger(), nullable=False),
        sa.Column('custom_boundary', _geography('MULTIPOLYGON'), nullable=True),
        sa.Column('custom_simplified_boundary', _geography('MULTIPOLYGON'), nullable=True),
        sa.Column('primary_administrative_boundary_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(
            ['primary_administrative_boundary_id'], ['administrative_boundaries.id'], ondelete='SET NULL'
        ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('slug'),
    )
    op.create_index('ix_operational_areas_is_active', 'operational_areas', ['is_active'])
    op.create_index('ix_operational_areas_display_level', 'operational_areas', ['display_level'])
    op.create_index(
        'ix_operational_areas_primary_administrative_boundary_id', 'operational_areas',
        ['primary_administrative_boundary_id'],
    )
    for column in ('custom_boundary', 'custom_simplified_boundary'):
        op.create_index(f'idx_operational_areas_{column}', 'operational_areas', [column], postgresql_using='gist')

    op.create_table(
        'shops',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name_en', sa.String(length=200), nullable=False),
        sa.Column('name_ar', sa.String(length=200), nullable=False),
        sa.Column('slug', sa.String(length=250), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('address', sa.String(length=500), nullable=True),
        sa.Column('location', _geography('POINT'), nullable=False),
        sa.Column('phone_number', sa.String(length=30), nullable=True),
        sa.Column('services_offered', sa.Text(), nullable=True),
        sa.Column('opening_hours', sa.String(length=200), nullable=True),
        sa.Column('category', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('logo_url', sa.String(length=500), nullable=True),
        sa.Column('operational_area_id', sa.Integer(), nullable=False),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['operational_area_id'], ['operational_areas.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('operational_area_id', 'slug', name='uq_shops_operational_area_slug'),
    )
    op.create_index('ix_shops_category', 'shops', ['category'])
    op.create_index('ix_shops_operational_area_id', 'shops', ['operational_area_id'])
    op.create_index('ix_shops_is_deleted', 'shops', ['is_deleted'])
    op.create_index('idx_shops_location', 'shops', ['location'], postgresql_using='gist')
    op.execute("CREATE INDEX idx_shops_location_geom ON shops USING gist ((location::geometry))")


def downgrade() -> None:
    op.drop_table('shops')
    op.drop_table('operational_areas')
    op.drop_table('admin_area_shop_stats')
    op.drop_table('administrative_boundaries')
