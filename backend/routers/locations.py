"""
Locations Router

Admin endpoints over the location engine. Clustering itself is driven by
marker events from the CRUD layer, not by these endpoints.

Endpoints:
    GET   /api/locations                    - All locations with marker counts
    GET   /api/locations/{id}               - One location
    PATCH /api/locations/{id}               - Rename
    PUT   /api/locations/{id}/hierarchy     - Change type / parent city
    POST  /api/locations/fix-orphans        - Attach parentless landmarks to cities
    POST  /api/locations/migrate            - Assign locations to markers that have none
"""

import logging
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from database import get_db
from schemas_locations import (
    LocationResponse, LocationListResponse, LocationUpdate, HierarchyUpdate,
    OrphanRepairResponse, MigrationResponse,
)
from services.location.engine import LocationEngine, location_to_dict
from services.location.errors import LocationNotFound, InvalidHierarchy
from services.location.registry import LocationRegistry

logger = logging.getLogger(__name__)

router = APIRouter()


def get_engine(request: Request) -> LocationEngine:
    """FastAPI dependency: the LocationEngine built at startup"""
    return request.app.state.location_engine


# =============================================================================
# READ
# =============================================================================

@router.get("", response_model=LocationListResponse)
async def list_locations(db: Session = Depends(get_db)):
    registry = LocationRegistry(db)
    counts = registry.marker_counts()
    locations = [
        LocationResponse(**location_to_dict(loc, counts.get(loc.id, 0)))
        for loc in registry.list_all()
    ]
    return LocationListResponse(locations=locations, total_count=len(locations))


@router.get("/{location_id}", response_model=LocationResponse)
async def get_location(location_id: str, db: Session = Depends(get_db)):
    registry = LocationRegistry(db)
    location = registry.get(location_id)
    if not location:
        raise HTTPException(status_code=404, detail="Location not found")
    count = registry.marker_counts(location_id).get(location_id, 0)
    return LocationResponse(**location_to_dict(location, count))


# =============================================================================
# WRITE
# =============================================================================

@router.patch("/{location_id}", response_model=LocationResponse)
async def update_location(
    location_id: str,
    data: LocationUpdate,
    engine: LocationEngine = Depends(get_engine),
):
    try:
        return LocationResponse(**engine.rename_location(location_id, data.name))
    except LocationNotFound:
        raise HTTPException(status_code=404, detail="Location not found")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.put("/{location_id}/hierarchy", response_model=Optional[LocationResponse])
async def update_location_hierarchy(
    location_id: str,
    data: HierarchyUpdate,
    engine: LocationEngine = Depends(get_engine),
):
    try:
        location = engine.on_location_type_or_parent_changed(location_id, data.placement.to_placement())
    except LocationNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidHierarchy as e:
        raise HTTPException(status_code=400, detail=str(e))
    # null: the location had no markers and no children left and was removed
    return LocationResponse(**location) if location is not None else None


# =============================================================================
# BATCH JOBS
# =============================================================================

@router.post("/fix-orphans", response_model=OrphanRepairResponse)
async def fix_orphan_landmarks(engine: LocationEngine = Depends(get_engine)):
    """Attach every landmark without a parent to its (city, country) city"""
    try:
        report = engine.run_orphan_repair()
    except Exception as e:
        logger.error(f"Fix orphans failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Fix orphans failed")
    return OrphanRepairResponse(**asdict(report))


@router.post("/migrate", response_model=MigrationResponse)
async def migrate_marker_locations(engine: LocationEngine = Depends(get_engine)):
    """Backfill location ids for markers created before clustering existed"""
    try:
        report = engine.assign_unlocated_markers()
    except Exception as e:
        logger.error(f"Location migration failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Migration failed")
    return MigrationResponse(**asdict(report))
