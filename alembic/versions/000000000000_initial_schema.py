"""initial_schema

Revision ID: 000000000000
Revises:
Create Date: 2026-10-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '000000000000'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

STAGING_TABLES = [
    'dob_permits',
    'hpd_violations',
    'dob_complaints',
    'complaints_311',
    'subway_stations',
    'amenities',
    'flood_zones',
    'condo_registry',
    'pluto_lots',
]


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
    ]


def _raw_record_columns():
    return [
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('source_id', sa.String(length=100), nullable=False, comment='Natural key from the source dataset'),
        sa.Column('bbl', sa.String(length=10), nullable=True, comment='Normalized 10-digit BBL when the source provides one'),
        sa.Column('latitude', sa.Float(), nullable=True),
        sa.Column('longitude', sa.Float(), nullable=True),
        sa.Column('raw_data', postgresql.JSONB(astext_type=sa.Text()), nullable=True, comment='Upstream payload as received'),
        sa.Column('fetched_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
    ]


def _create_staging_table(name, *columns):
    op.create_table(
        name,
        *_raw_record_columns(),
        *columns,
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('source_id'),
    )
    op.create_index(f'ix_{name}_bbl', name, ['bbl'], unique=False)


def upgrade() -> None:
    # Canonical properties
    op.create_table(
        'properties',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('bbl', sa.String(length=10), nullable=True, comment='10-digit Borough-Block-Lot'),
        sa.Column('bin', sa.String(length=10), nullable=True, comment='Building Identification Number'),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('unit', sa.String(length=50), nullable=True, comment='Unit designation, enriched from the condo registry'),
        sa.Column('normalized_address', sa.String(length=255), nullable=True, comment='Rule-based or geocoder-normalized address'),
        sa.Column('city', sa.String(length=100), nullable=True),
        sa.Column('state', sa.String(length=2), nullable=True),
        sa.Column('zip_code', sa.String(length=10), nullable=True),
        sa.Column('borough', sa.String(length=20), nullable=True),
        sa.Column('latitude', sa.Float(), nullable=True),
        sa.Column('longitude', sa.Float(), nullable=True),
        sa.Column('grid_lat', sa.Integer(), nullable=True, comment='floor(latitude * 1000)'),
        sa.Column('grid_lng', sa.Integer(), nullable=True, comment='floor(longitude * 1000)'),
        sa.Column('property_type', sa.String(length=50), nullable=True),
        sa.Column('sqft', sa.Integer(), nullable=True),
        sa.Column('last_sale_price', sa.Float(), nullable=True),
        sa.Column('last_sale_date', sa.Date(), nullable=True),
        sa.Column('price_per_sqft', sa.Float(), nullable=True),
        sa.Column('opportunity_score', sa.Integer(), nullable=True),
        sa.Column('confidence_level', sa.String(length=10), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('bbl'),
        sa.CheckConstraint('latitude >= -90 AND latitude <= 90', name='check_latitude_range'),
        sa.CheckConstraint('longitude >= -180 AND longitude <= 180', name='check_longitude_range'),
    )
    op.create_index('idx_properties_zip_code', 'properties', ['zip_code'], unique=False)
    op.create_index('idx_properties_grid', 'properties', ['grid_lat', 'grid_lng'], unique=False)

    # Buildings and condo units
    op.create_table(
        'buildings',
        sa.Column('base_bbl', sa.String(length=10), nullable=False),
        sa.Column('condo_number', sa.String(length=20), nullable=True),
        sa.Column('display_address', sa.String(length=255), nullable=True),
        sa.Column('zip_code', sa.String(length=10), nullable=True),
        sa.Column('borough', sa.String(length=20), nullable=True),
        sa.Column('latitude', sa.Float(), nullable=True),
        sa.Column('longitude', sa.Float(), nullable=True),
        sa.Column('unit_count', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('base_bbl'),
    )
    op.create_table(
        'condo_units',
        sa.Column('unit_bbl', sa.String(length=10), nullable=False),
        sa.Column('base_bbl', sa.String(length=10), nullable=False, comment='References buildings table'),
        sa.Column('unit_designation', sa.String(length=50), nullable=True),
        sa.Column('property_id', sa.String(length=36), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['base_bbl'], ['buildings.base_bbl'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['property_id'], ['properties.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('unit_bbl'),
    )
    op.create_index('idx_condo_units_base_bbl', 'condo_units', ['base_bbl'], unique=False)

    # Raw staging tables
    _create_staging_table(
        'dob_permits',
        sa.Column('job_filing_number', sa.String(length=50), nullable=True),
        sa.Column('work_type', sa.String(length=100), nullable=True),
        sa.Column('permit_status', sa.String(length=50), nullable=True),
        sa.Column('issued_date', sa.Date(), nullable=True),
        sa.Column('estimated_job_cost', sa.Float(), nullable=True),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('zip_code', sa.String(length=10), nullable=True),
    )
    op.create_index('idx_dob_permits_issued_date', 'dob_permits', ['issued_date'], unique=False)

    _create_staging_table(
        'hpd_violations',
        sa.Column('building_id', sa.String(length=20), nullable=True),
        sa.Column('violation_class', sa.String(length=5), nullable=True),
        sa.Column('violation_status', sa.String(length=20), nullable=True, comment='Open or Close'),
        sa.Column('inspection_date', sa.Date(), nullable=True),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('zip_code', sa.String(length=10), nullable=True),
    )
    op.create_index('idx_hpd_violations_status', 'hpd_violations', ['violation_status'], unique=False)

    _create_staging_table(
        'dob_complaints',
        sa.Column('bin', sa.String(length=10), nullable=True),
        sa.Column('complaint_category', sa.String(length=20), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=True),
        sa.Column('date_entered', sa.Date(), nullable=True),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('zip_code', sa.String(length=10), nullable=True),
    )

    _create_staging_table(
        'complaints_311',
        sa.Column('complaint_type', sa.String(length=100), nullable=True),
        sa.Column('descriptor', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=30), nullable=True),
        sa.Column('created_date', sa.Date(), nullable=True),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('zip_code', sa.String(length=10), nullable=True),
    )
    op.create_index('idx_complaints_311_created_date', 'complaints_311', ['created_date'], unique=False)

    _create_staging_table(
        'subway_stations',
        sa.Column('station_name', sa.String(length=255), nullable=False),
        sa.Column('routes', postgresql.JSONB(astext_type=sa.Text()), nullable=True, comment='Daytime routes serving the station'),
        sa.Column('ada_accessible', sa.Boolean(), nullable=False),
        sa.Column('borough', sa.String(length=20), nullable=True),
    )

    _create_staging_table(
        'amenities',
        sa.Column('category', sa.String(length=30), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('borough', sa.String(length=20), nullable=True),
    )
    op.create_index('idx_amenities_category', 'amenities', ['category'], unique=False)

    _create_staging_table(
        'flood_zones',
        sa.Column('borough', sa.String(length=20), nullable=True),
        sa.Column('zip_code', sa.String(length=10), nullable=True),
        sa.Column('zone_code', sa.String(length=20), nullable=False),
        sa.Column('risk_level', sa.String(length=20), nullable=False),
        sa.Column('is_high_risk', sa.Boolean(), nullable=False),
        sa.Column('is_moderate_risk', sa.Boolean(), nullable=False),
    )

    _create_staging_table(
        'condo_registry',
        sa.Column('base_bbl', sa.String(length=10), nullable=True),
        sa.Column('condo_number', sa.String(length=20), nullable=True),
        sa.Column('unit_designation', sa.String(length=50), nullable=True),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('zip_code', sa.String(length=10), nullable=True),
    )
    op.create_index('ix_condo_registry_base_bbl', 'condo_registry', ['base_bbl'], unique=False)

    _create_staging_table(
        'pluto_lots',
        sa.Column('borough', sa.String(length=20), nullable=True),
        sa.Column('building_class', sa.String(length=5), nullable=True),
        sa.Column('residential_units', sa.Integer(), nullable=True),
        sa.Column('year_built', sa.Integer(), nullable=True),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('zip_code', sa.String(length=10), nullable=True),
    )

    # Entity resolution map
    op.create_table(
        'entity_resolution_map',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('source_system', sa.String(length=50), nullable=False),
        sa.Column('source_record_id', sa.String(length=100), nullable=False),
        sa.Column('source_bbl', sa.String(length=10), nullable=True),
        sa.Column('matched_property_id', sa.String(length=36), nullable=True, comment='Null for unmatched records'),
        sa.Column('match_type', sa.String(length=20), nullable=False),
        sa.Column('match_confidence', sa.Float(), nullable=False),
        sa.Column('match_metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.ForeignKeyConstraint(['matched_property_id'], ['properties.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('source_system', 'source_record_id', name='uq_entity_resolution_source'),
        sa.CheckConstraint(
            "match_type IN ('exact', 'registry', 'address', 'unmatched')",
            name='check_match_type_valid'
        ),
        sa.CheckConstraint(
            'match_confidence >= 0 AND match_confidence <= 1',
            name='check_match_confidence_range'
        ),
    )
    op.create_index('idx_entity_resolution_map_property', 'entity_resolution_map', ['matched_property_id'], unique=False)
    op.create_index('idx_entity_resolution_map_source_system', 'entity_resolution_map', ['source_system'], unique=False)

    # Per-property signal summary
    op.create_table(
        'property_signal_summary',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('property_id', sa.String(length=36), nullable=False),
        sa.Column('bbl', sa.String(length=10), nullable=True),
        sa.Column('open_hpd_violations', sa.Integer(), nullable=False),
        sa.Column('total_hpd_violations', sa.Integer(), nullable=False),
        sa.Column('open_dob_complaints', sa.Integer(), nullable=False),
        sa.Column('total_dob_complaints', sa.Integer(), nullable=False),
        sa.Column('permits_12m', sa.Integer(), nullable=False),
        sa.Column('complaints_311_12m', sa.Integer(), nullable=False),
        sa.Column('building_health_score', sa.Integer(), nullable=False),
        sa.Column('health_risk_level', sa.String(length=10), nullable=False),
        sa.Column('nearest_subway_distance_m', sa.Integer(), nullable=True),
        sa.Column('nearest_subway_station', sa.String(length=255), nullable=True),
        sa.Column('nearest_subway_lines', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('subway_stations_nearby', sa.Integer(), nullable=False),
        sa.Column('has_accessible_transit', sa.Boolean(), nullable=False),
        sa.Column('transit_score', sa.Integer(), nullable=False),
        sa.Column('parks_nearby', sa.Integer(), nullable=False),
        sa.Column('schools_nearby', sa.Integer(), nullable=False),
        sa.Column('hospitals_nearby', sa.Integer(), nullable=False),
        sa.Column('libraries_nearby', sa.Integer(), nullable=False),
        sa.Column('groceries_nearby', sa.Integer(), nullable=False),
        sa.Column('amenities_400m', sa.Integer(), nullable=False),
        sa.Column('amenities_800m', sa.Integer(), nullable=False),
        sa.Column('amenity_score', sa.Integer(), nullable=False),
        sa.Column('flood_zone', sa.String(length=20), nullable=True),
        sa.Column('flood_risk_level', sa.String(length=20), nullable=True),
        sa.Column('is_flood_high_risk', sa.Boolean(), nullable=False),
        sa.Column('is_flood_moderate_risk', sa.Boolean(), nullable=False),
        sa.Column('opportunity_score', sa.Integer(), nullable=False),
        sa.Column('opportunity_vs_market_points', sa.Float(), nullable=False),
        sa.Column('opportunity_trend_points', sa.Float(), nullable=False),
        sa.Column('opportunity_recency_points', sa.Float(), nullable=False),
        sa.Column('data_completeness', sa.Float(), nullable=False, comment='Fraction of signal inputs available (0-1)'),
        sa.Column('signal_confidence', sa.String(length=10), nullable=False),
        sa.Column('signal_data_sources', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('computed_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['property_id'], ['properties.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('property_id'),
        sa.CheckConstraint('building_health_score >= 0 AND building_health_score <= 100', name='check_building_health_score_range'),
        sa.CheckConstraint('transit_score >= 0 AND transit_score <= 100', name='check_transit_score_range'),
        sa.CheckConstraint('amenity_score >= 0 AND amenity_score <= 100', name='check_amenity_score_range'),
        sa.CheckConstraint('opportunity_score >= 0 AND opportunity_score <= 100', name='check_opportunity_score_range'),
    )
    op.create_index('idx_property_signal_summary_bbl', 'property_signal_summary', ['bbl'], unique=False)

    # Market aggregates
    op.create_table(
        'market_aggregates',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('geo_type', sa.String(length=20), nullable=False),
        sa.Column('geo_id', sa.String(length=20), nullable=False),
        sa.Column('median_price_per_sqft', sa.Float(), nullable=True),
        sa.Column('transaction_count', sa.Integer(), nullable=False),
        sa.Column('trend_12m', sa.Float(), nullable=True, comment='Percent change in median price/sqft versus the prior 12 months'),
        sa.Column('computed_at', sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('geo_type', 'geo_id', name='uq_market_aggregates_geo'),
    )

    # Ingestion and stage tracking
    op.create_table(
        'data_ingestion_runs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('source_type', sa.String(length=50), nullable=False, comment='Dataset name or stage:<name>'),
        sa.Column('status', sa.String(length=20), nullable=False, comment='Job status: running, success, failure, partial'),
        sa.Column('records_processed', sa.Integer(), nullable=False),
        sa.Column('records_inserted', sa.Integer(), nullable=False),
        sa.Column('records_skipped', sa.Integer(), nullable=False, comment='Rows already present (conflict on natural key)'),
        sa.Column('records_failed', sa.Integer(), nullable=False, comment='Rejected records or failed entities'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('run_metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint("status IN ('running', 'success', 'failure', 'partial')", name='check_status_valid'),
    )
    op.create_index('idx_data_ingestion_runs_source_type', 'data_ingestion_runs', ['source_type'], unique=False)
    op.create_index('idx_data_ingestion_runs_started_at', 'data_ingestion_runs', ['started_at'], unique=False)


def downgrade() -> None:
    op.drop_table('data_ingestion_runs')
    op.drop_table('market_aggregates')
    op.drop_table('property_signal_summary')
    op.drop_table('entity_resolution_map')
    for name in reversed(STAGING_TABLES):
        op.drop_table(name)
    op.drop_table('condo_units')
    op.drop_table('buildings')
    op.drop_table('properties')
