"""
Location Services Module

Resolves geo-tagged markers into canonical, deduplicated locations and keeps
the city/landmark hierarchy consistent.

    distance     - haversine distance and centroid math
    location_id  - collision-checked 8-character location ids
    registry     - persistent store of locations (find/create/delete)
    clustering   - find-or-create the location owning a marker
    centroid     - recompute centroids, drop empty locations
    membership   - session hook that tracks membership changes
    hierarchy    - city/landmark rules, type switches, orphan repair
    locking      - spatial lock around cluster creation
    engine       - trigger events consumed from the CRUD layer

Usage:
    from services.location.engine import LocationEngine
    engine = LocationEngine(database)
    engine.on_marker_created(marker_id, lat, lng, city="Paris")
"""
