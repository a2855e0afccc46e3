"""
SQLAlchemy ORM models for the property tables.

Architecture:
- Staging layer: property_point_view_staging, truncated and reloaded by every import
- Canonical layer: property_point_view, merged from staging by objectid
- Derived layer: property_meta, recomputed by the maintenance jobs
- Settings: externally managed, read-only here

Tables are declared in the ``neurastate`` schema; init_database remaps the name
when DB_SCHEMA differs.
"""

from geoalchemy2 import Geometry
from sqlalchemy import (
    BigInteger, Boolean, CheckConstraint, Column, Float, Index, Integer, Text,
    TIMESTAMP, text
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()

SCHEMA = 'neurastate'
TARGET_SRID = 4326

# Column order of the upstream CSV. The header row must match it exactly.
PROPERTY_POINT_VIEW_COLUMNS = (
    'x',
    'y',
    'objectid',
    'folio',
    'ttrrss',
    'x_coord',
    'y_coord',
    'true_site_addr',
    'true_site_unit',
    'true_site_city',
    'true_site_zip_code',
    'true_mailing_addr1',
    'true_mailing_addr2',
    'true_mailing_addr3',
    'true_mailing_city',
    'true_mailing_state',
    'true_mailing_zip_code',
    'true_mailing_country',
    'true_owner1',
    'true_owner2',
    'true_owner3',
    'condo_flag',
    'parent_folio',
    'dor_code_cur',
    'dor_desc',
    'subdivision',
    'bedroom_count',
    'bathroom_count',
    'half_bathroom_count',
    'floor_count',
    'unit_count',
    'building_actual_area',
    'building_heated_area',
    'lot_size',
    'year_built',
    'assessment_year_cur',
    'assessed_val_cur',
    'dos_1',
    'price_1',
    'legal',
    'pid',
    'dateofsale_utc',
)


class _PropertyPointColumns:
    """Columns shared by the staging and canonical tables"""

    # Coordinates
    x = Column(Float)
    y = Column(Float)
    x_coord = Column(Float)
    y_coord = Column(Float)

    # Identifiers
    folio = Column(Text)
    ttrrss = Column(Text)
    parent_folio = Column(Text)
    pid = Column(BigInteger)

    # Site address
    true_site_addr = Column(Text)
    true_site_unit = Column(Text)
    true_site_city = Column(Text)
    true_site_zip_code = Column(Text)

    # Mailing address
    true_mailing_addr1 = Column(Text)
    true_mailing_addr2 = Column(Text)
    true_mailing_addr3 = Column(Text)
    true_mailing_city = Column(Text)
    true_mailing_state = Column(Text)
    true_mailing_zip_code = Column(Text)
    true_mailing_country = Column(Text)

    # Owners
    true_owner1 = Column(Text)
    true_owner2 = Column(Text)
    true_owner3 = Column(Text)

    # Classification
    dor_code_cur = Column(Text)
    dor_desc = Column(Text)
    subdivision = Column(Text)

    # Building
    bedroom_count = Column(Integer)
    bathroom_count = Column(Integer)
    half_bathroom_count = Column(Integer)
    floor_count = Column(Integer)
    unit_count = Column(Integer)
    building_actual_area = Column(Float)
    building_heated_area = Column(Float)
    lot_size = Column(Float)
    year_built = Column(Integer)

    # Assessment & sale
    assessment_year_cur = Column(Integer)
    assessed_val_cur = Column(Float)
    dos_1 = Column(Text)
    price_1 = Column(Float)
    dateofsale_utc = Column(Text)

    # Legal
    legal = Column(Text)


class PropertyPointViewStaging(_PropertyPointColumns, Base):
    """Landing table for the raw CSV. Truncated before every load."""
    __tablename__ = 'property_point_view_staging'

    # Staging has no key; the surrogate id only satisfies the ORM mapper
    id = Column(BigInteger, primary_key=True, autoincrement=True)
    objectid = Column(Integer)
    condo_flag = Column(Text)

    __table_args__ = ({'schema': SCHEMA},)


class PropertyPointView(_PropertyPointColumns, Base):
    """Canonical property table, one row per upstream objectid"""
    __tablename__ = 'property_point_view'

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    objectid = Column(Integer, unique=True, nullable=False)

    # Normalised from the staging string ('y' case-insensitive)
    condo_flag = Column(Boolean, nullable=False, server_default=text('false'))

    # Maintained by the data maintenance jobs
    is_parent_folio = Column(Boolean, server_default=text('false'))

    # Lower-cased, unaccented search blob
    search_all = Column(Text)

    # Derived geometry
    # SRID follows SOURCE_SRID, so the column is not constrained to one
    geom_raw = Column(Geometry('POINT', srid=-1, spatial_index=False))
    geom = Column(Geometry('POINT', srid=TARGET_SRID))

    created_at = Column(TIMESTAMP(timezone=True), server_default=text('NOW()'))
    updated_at = Column(TIMESTAMP(timezone=True), server_default=text('NOW()'))

    __table_args__ = (
        Index('idx_property_point_view_folio', 'folio'),
        Index('idx_property_point_view_parent_folio', 'parent_folio'),
        {'schema': SCHEMA},
    )


class PropertyMeta(Base):
    """Per-parent metadata derived from property_point_view"""
    __tablename__ = 'property_meta'

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    object_id = Column(Integer, unique=True, nullable=False)
    folio = Column(Text)
    children_count = Column(Integer, nullable=False, server_default=text('0'))

    created_at = Column(TIMESTAMP(timezone=True), server_default=text('NOW()'))

    __table_args__ = (
        CheckConstraint('children_count >= 0', name='ck_property_meta_children_count'),
        {'schema': SCHEMA},
    )


class Settings(Base):
    """Administrative settings. Only the first row (by id) is read."""
    __tablename__ = 'settings'

    id = Column(Integer, primary_key=True)
    dataset_point_of_view_url = Column(Text)

    created_at = Column(TIMESTAMP(timezone=True), server_default=text('NOW()'))
    updated_at = Column(TIMESTAMP(timezone=True), server_default=text('NOW()'))

    __table_args__ = ({'schema': SCHEMA},)


def qualified_name(table_name: str, schema_name: str = SCHEMA) -> str:
    """Schema-qualified, quoted table name for raw SQL."""
    return f'"{schema_name}"."{table_name}"'
