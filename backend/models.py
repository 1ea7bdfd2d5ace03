"""
SQLAlchemy models for the Location Engine

Tables:
    - Location: canonical deduplicated cluster that markers resolve to
    - Marker: geo-tagged point written by the CRUD layer (explorer_markers)

Only the columns the clustering core reads or writes are mapped on Marker.
The CRUD layer owns the rest of that table.
"""

from sqlalchemy import Column, Integer, String, Text, Float, ForeignKey, Index, TIMESTAMP
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


# Values stored in the `type` column of both tables (NULL = unset)
LOCATION_TYPE_CITY = "city"
LOCATION_TYPE_LANDMARK = "landmark"


# =============================================================================
# LOCATIONS
# =============================================================================

class Location(Base):
    """
    Canonical geospatial cluster.

    latitude/longitude hold the centroid of all member markers and are
    rewritten on every membership change. city/district/country are the
    first-seen values. name is the user-editable display label and is
    never touched by clustering.

    parent_location_id is only set for landmarks attached to a city.
    """
    __tablename__ = "locations"

    id = Column(String(8), primary_key=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    city = Column(Text)
    district = Column(Text)
    country = Column(Text)
    name = Column(Text)
    type = Column(Text)                                 # 'city', 'landmark', NULL
    parent_location_id = Column(String(8), ForeignKey("locations.id", ondelete="SET NULL"))
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, default=func.current_timestamp())
    updated_at = Column(
        TIMESTAMP(timezone=True), nullable=False,
        default=func.current_timestamp(), onupdate=func.current_timestamp(),
    )

    parent = relationship("Location", remote_side=[id], foreign_keys=[parent_location_id])

    __table_args__ = (
        Index("idx_locations_coords", "latitude", "longitude"),
        Index("idx_locations_parent", "parent_location_id"),
    )

    @property
    def is_city(self):
        return self.type == LOCATION_TYPE_CITY

    @property
    def is_landmark(self):
        return self.type == LOCATION_TYPE_LANDMARK

    def __repr__(self):
        return f"<Location {self.id} ({self.latitude:.6f}, {self.longitude:.6f}) type={self.type}>"


# =============================================================================
# MARKERS
# =============================================================================

class Marker(Base):
    """Point of interest created by the CRUD layer"""
    __tablename__ = "explorer_markers"

    id = Column(Integer, primary_key=True)
    title = Column(Text, nullable=False, default="")
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    city = Column(Text)
    district = Column(Text)
    country = Column(Text)
    type = Column(Text)                                 # 'city', 'landmark', NULL
    parent_location_id = Column(String(8), ForeignKey("locations.id", ondelete="SET NULL"))
    location_id = Column(String(8), ForeignKey("locations.id", ondelete="SET NULL"))
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, default=func.current_timestamp())

    location = relationship("Location", foreign_keys=[location_id])

    __table_args__ = (
        Index("idx_markers_location_id", "location_id"),
    )

    def __repr__(self):
        return f"<Marker {self.id} ({self.latitude}, {self.longitude}) location={self.location_id}>"
