"""
Marker Hierarchy Router

Type/parent changes on markers. Plain marker CRUD lives in the CRUD layer.

Endpoints:
    POST /api/markers/{id}/switch-type   - Move a marker between city and landmark
    PUT  /api/markers/bulk-update        - Set type/parent city on several markers
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from routers.locations import get_engine
from schemas_locations import (
    MarkerTypeSwitch, MarkerTypeSwitchResponse,
    MarkerBulkHierarchyUpdate, MarkerBulkHierarchyResponse,
)
from services.location.engine import LocationEngine
from services.location.errors import LocationNotFound, MarkerNotFound, InvalidHierarchy

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/{marker_id}/switch-type", response_model=MarkerTypeSwitchResponse)
async def switch_marker_type(
    marker_id: int,
    data: MarkerTypeSwitch,
    engine: LocationEngine = Depends(get_engine),
):
    try:
        location_id = engine.switch_marker_type(marker_id, data.type)
    except (MarkerNotFound, LocationNotFound) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidHierarchy as e:
        raise HTTPException(status_code=400, detail=str(e))
    return MarkerTypeSwitchResponse(marker_id=marker_id, location_id=location_id)


@router.put("/bulk-update", response_model=MarkerBulkHierarchyResponse)
async def bulk_update_markers(
    data: MarkerBulkHierarchyUpdate,
    engine: LocationEngine = Depends(get_engine),
):
    try:
        updated = engine.update_markers_hierarchy(data.marker_ids, data.placement.to_placement())
    except MarkerNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (LocationNotFound, InvalidHierarchy) as e:
        # bad parent reference is a validation error on this payload
        raise HTTPException(status_code=400, detail=str(e))
    return MarkerBulkHierarchyResponse(updated_count=len(updated), updated_ids=updated)
