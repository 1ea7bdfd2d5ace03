"""
Pydantic Schemas for the Location Engine admin API
Covers: locations, hierarchy changes, marker hierarchy, batch jobs.
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any, Union, Literal, Annotated
from datetime import datetime

from services.location.hierarchy import Unset, City, Landmark, Placement


# =============================================================================
# LOCATIONS
# =============================================================================

class LocationResponse(BaseModel):
    """Location returned from API"""
    id: str
    latitude: float
    longitude: float
    city: Optional[str] = None
    district: Optional[str] = None
    country: Optional[str] = None
    name: Optional[str] = None
    type: Optional[str] = None                  # 'city', 'landmark', None
    parent_location_id: Optional[str] = None
    marker_count: Optional[int] = None          # Populated by list/detail endpoints
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class LocationListResponse(BaseModel):
    locations: List[LocationResponse]
    total_count: int


class LocationUpdate(BaseModel):
    """Editable display fields. Clustering never touches these."""
    name: Optional[str] = None


# =============================================================================
# HIERARCHY
# =============================================================================

class UnsetPlacementIn(BaseModel):
    type: Literal["unset"]

    def to_placement(self) -> Placement:
        return Unset()


class CityPlacementIn(BaseModel):
    type: Literal["city"]

    def to_placement(self) -> Placement:
        return City()


class LandmarkPlacementIn(BaseModel):
    type: Literal["landmark"]
    parent_location_id: Optional[str] = None

    def to_placement(self) -> Placement:
        return Landmark(self.parent_location_id)


PlacementIn = Annotated[
    Union[UnsetPlacementIn, CityPlacementIn, LandmarkPlacementIn],
    Field(discriminator="type"),
]


class HierarchyUpdate(BaseModel):
    """Type/parent change for a location"""
    placement: PlacementIn


class MarkerTypeSwitch(BaseModel):
    type: Literal["city", "landmark"]


class MarkerTypeSwitchResponse(BaseModel):
    marker_id: int
    location_id: str


class MarkerBulkHierarchyUpdate(BaseModel):
    marker_ids: List[int] = Field(..., min_length=1)
    placement: PlacementIn


class MarkerBulkHierarchyResponse(BaseModel):
    success: bool = True
    updated_count: int
    updated_ids: List[int]


# =============================================================================
# BATCH JOBS
# =============================================================================

class OrphanRepairResponse(BaseModel):
    success: bool = True
    total_orphans: int
    fixed: int
    failed: int
    skipped: int = 0
    cities_created: int
    remaining_orphans: int
    errors: List[Dict[str, str]] = []


class MigrationResponse(BaseModel):
    success: bool = True
    total_processed: int
    assigned: int
    failed: int
    total_locations: int
    avg_markers_per_location: float
    errors: List[Dict[str, Any]] = []
