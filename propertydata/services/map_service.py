"""
Map Service

Read-only spatial queries over property_point_view for the map view.

Markers are fetched per viewport with ST_Intersects against ST_MakeEnvelope,
which the GiST index on geom accelerates. Full property details are loaded
one at a time when a marker is opened.
"""
from typing import Any, Dict, List, Optional

import structlog
from pydantic import BaseModel, Field, model_validator
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.models import SCHEMA, TARGET_SRID, qualified_name
from .upsert_merger import CANONICAL_TABLE

logger = structlog.get_logger(__name__)

MAX_PROPERTIES_LIMIT = 5000
DEFAULT_PROPERTIES_LIMIT = 1000
MINIMUM_ZOOM_LEVEL = 13


class MapQueryError(Exception):
    """Base class for expected map query failures"""


class ZoomTooLowError(MapQueryError):
    """The viewport is zoomed out too far to load markers"""

    def __init__(self, zoom: float, min_zoom: int):
        self.zoom = zoom
        self.min_zoom = min_zoom
        super().__init__(f"Zoom level {zoom:g} is below minimum required level {min_zoom}")


class BoundingBox(BaseModel):
    """WGS84 viewport; min values must be strictly below max values"""
    min_lng: float
    min_lat: float
    max_lng: float
    max_lat: float

    @model_validator(mode='after')
    def check_ordering(self) -> "BoundingBox":
        if self.min_lng >= self.max_lng or self.min_lat >= self.max_lat:
            raise ValueError("min values must be less than max values")
        return self


class MapPropertyFilters(BaseModel):
    bbox: BoundingBox
    zoom: Optional[float] = None
    limit: Optional[int] = None
    offset: Optional[int] = None


class MapPropertyMarker(BaseModel):
    object_id: int = Field(serialization_alias='objectId')
    lng: float
    lat: float


class MapPropertyDetails(BaseModel):
    object_id: int = Field(serialization_alias='objectId')
    lng: Optional[float] = None
    lat: Optional[float] = None
    address: Optional[str] = None
    city: Optional[str] = None
    zip_code: Optional[str] = Field(default=None, serialization_alias='zipCode')
    owner: Optional[str] = None
    assessed_value: Optional[float] = Field(default=None, serialization_alias='assessedValue')
    last_sale_price: Optional[float] = Field(default=None, serialization_alias='lastSalePrice')
    bedrooms: Optional[int] = None
    bathrooms: Optional[int] = None
    building_area: Optional[float] = Field(default=None, serialization_alias='buildingArea')
    year_built: Optional[int] = Field(default=None, serialization_alias='yearBuilt')
    property_type: Optional[str] = Field(default=None, serialization_alias='propertyType')


def calculate_effective_limit(requested_limit: Optional[int]) -> int:
    if requested_limit is None:
        return DEFAULT_PROPERTIES_LIMIT
    return max(1, min(int(requested_limit), MAX_PROPERTIES_LIMIT))


class MapService:
    """Bounding-box and detail lookups for map markers"""

    def __init__(
        self,
        session: AsyncSession,
        min_zoom_level: int = MINIMUM_ZOOM_LEVEL,
        schema_name: str = SCHEMA,
    ):
        self.session = session
        self.min_zoom_level = min_zoom_level
        self.table = qualified_name(CANONICAL_TABLE, schema_name)

    def get_minimum_zoom_level(self) -> int:
        return self.min_zoom_level

    async def get_properties_in_bounds(self, filters: MapPropertyFilters) -> List[MapPropertyMarker]:
        """
        Get root-parcel markers whose geometry intersects the bounding box.

        Condo sub-units (condo_flag = true) are left out. Rows are ordered by
        objectid so limit/offset paging is stable.

        Raises:
            ZoomTooLowError: zoom was given and is below the minimum zoom level
        """
        if filters.zoom is not None and filters.zoom < self.min_zoom_level:
            raise ZoomTooLowError(filters.zoom, self.min_zoom_level)

        params: Dict[str, Any] = {
            "min_lng": filters.bbox.min_lng,
            "min_lat": filters.bbox.min_lat,
            "max_lng": filters.bbox.max_lng,
            "max_lat": filters.bbox.max_lat,
            "limit": calculate_effective_limit(filters.limit),
            "offset": max(0, filters.offset or 0),
        }

        query = text(f"""
            SELECT
                objectid AS object_id,
                ST_X(geom) AS lng,
                ST_Y(geom) AS lat
            FROM {self.table}
            WHERE geom IS NOT NULL
              AND ST_Intersects(
                  geom,
                  ST_MakeEnvelope(
                      CAST(:min_lng AS double precision),
                      CAST(:min_lat AS double precision),
                      CAST(:max_lng AS double precision),
                      CAST(:max_lat AS double precision),
                      {TARGET_SRID}
                  )
              )
              AND (condo_flag = false OR condo_flag IS NULL)
            ORDER BY objectid
            LIMIT :limit OFFSET :offset
        """)

        result = await self.session.execute(query, params)
        rows = result.mappings().all()

        logger.debug("map_bounds_query", rows=len(rows), limit=params["limit"], offset=params["offset"])
        return [MapPropertyMarker(**row) for row in rows]

    async def get_property_details(self, object_id: int) -> Optional[MapPropertyDetails]:
        """Full projection for one objectid, or None when it does not exist."""
        query = text(f"""
            SELECT
                objectid AS object_id,
                ST_X(geom) AS lng,
                ST_Y(geom) AS lat,
                true_site_addr AS address,
                true_site_city AS city,
                true_site_zip_code AS zip_code,
                true_owner1 AS owner,
                assessed_val_cur AS assessed_value,
                price_1 AS last_sale_price,
                bedroom_count AS bedrooms,
                bathroom_count AS bathrooms,
                building_actual_area AS building_area,
                year_built,
                dor_desc AS property_type
            FROM {self.table}
            WHERE objectid = :object_id
            LIMIT 1
        """)

        result = await self.session.execute(query, {"object_id": object_id})
        row = result.mappings().first()
        if row is None:
            return None
        return MapPropertyDetails(**row)
