"""
FastAPI routes for the property map

GET /api/map/properties?bbox=minLng,minLat,maxLng,maxLat&zoom=&limit=&offset=
GET /api/map/properties/{object_id}
"""
import math
from typing import Any, AsyncGenerator, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from ..services.map_service import (
    BoundingBox,
    MapPropertyFilters,
    MapService,
    ZoomTooLowError,
)
from ..utils.logging import get_logger


logger = get_logger(__name__)
router = APIRouter(prefix="/api/map", tags=["Map"])


async def get_map_service(request: Request) -> AsyncGenerator[MapService, None]:
    """Request-scoped MapService on a pooled session"""
    db_manager = request.app.state.db_manager
    settings = request.app.state.settings
    async with db_manager.get_session() as session:
        yield MapService(
            session,
            min_zoom_level=settings.MAP_MIN_ZOOM_LEVEL,
            schema_name=db_manager.connector.schema_name,
        )


def parse_bounding_box(raw: Optional[str]) -> Optional[BoundingBox]:
    """Parse "minLng,minLat,maxLng,maxLat"; None when malformed or inverted."""
    if not raw:
        return None

    parts = raw.split(",")
    if len(parts) != 4:
        return None

    try:
        values = [float(part.strip()) for part in parts]
    except ValueError:
        return None
    if any(math.isnan(v) or math.isinf(v) for v in values):
        return None

    min_lng, min_lat, max_lng, max_lat = values
    try:
        return BoundingBox(min_lng=min_lng, min_lat=min_lat, max_lng=max_lng, max_lat=max_lat)
    except ValueError:
        return None


def parse_number_param(raw: Optional[str]) -> Optional[float]:
    """Unparseable numbers are treated as absent."""
    if not raw:
        return None
    try:
        value = float(raw)
    except ValueError:
        return None
    return None if math.isnan(value) or math.isinf(value) else value


def _error(status_code: int, error: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error, **extra})


@router.get("/properties")
async def get_map_properties(
    bbox: Optional[str] = Query(default=None, description="minLng,minLat,maxLng,maxLat"),
    zoom: Optional[str] = Query(default=None),
    limit: Optional[str] = Query(default=None),
    offset: Optional[str] = Query(default=None),
    map_service: MapService = Depends(get_map_service),
):
    """Markers inside the viewport"""
    bounding_box = parse_bounding_box(bbox)
    if bounding_box is None:
        return _error(
            400,
            "Invalid or missing bbox parameter. Expected format: minLng,minLat,maxLng,maxLat",
        )

    parsed_limit = parse_number_param(limit)
    parsed_offset = parse_number_param(offset)
    filters = MapPropertyFilters(
        bbox=bounding_box,
        zoom=parse_number_param(zoom),
        limit=int(parsed_limit) if parsed_limit is not None else None,
        offset=int(parsed_offset) if parsed_offset is not None else None,
    )

    try:
        markers = await map_service.get_properties_in_bounds(filters)
    except ZoomTooLowError as e:
        return _error(400, "zoom_too_low", minZoom=e.min_zoom, message=str(e))
    except Exception as e:
        logger.error("map_properties_query_failed", error=str(e))
        return _error(500, "Failed to fetch map properties")

    return {
        "success": True,
        "data": [marker.model_dump(by_alias=True) for marker in markers],
    }


@router.get("/properties/{object_id}")
async def get_map_property_details(
    object_id: str,
    map_service: MapService = Depends(get_map_service),
):
    """Full details for one property, loaded when a marker is opened"""
    try:
        parsed_id = int(object_id)
    except ValueError:
        parsed_id = 0
    if parsed_id <= 0:
        return _error(400, "Invalid property ID")

    try:
        details = await map_service.get_property_details(parsed_id)
    except Exception as e:
        logger.error("map_property_details_failed", object_id=parsed_id, error=str(e))
        return _error(500, "Failed to fetch property details")

    if details is None:
        return _error(404, "Property not found")

    return {"success": True, "data": details.model_dump(by_alias=True)}
