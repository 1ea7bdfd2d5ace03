"""
Membership tracking hook

Session events that notice marker changes affecting location membership
(new marker with a location, marker deleted, location_id changed) and
recompute those locations' centroids before the transaction commits.
This covers CRUD paths that move markers between locations through the
ORM without going through LocationEngine.

Coordinate edits are left to on_marker_coordinates_changed, which needs
the old position to decide whether the marker changes cluster. Bulk
UPDATE/DELETE statements bypass the ORM and are not seen here either.
"""

import logging

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session, sessionmaker

from models import Marker

logger = logging.getLogger(__name__)

TOUCHED_KEY = "touched_locations"


def touched_locations(db: Session) -> set:
    return db.info.setdefault(TOUCHED_KEY, set())


def mark_touched(db: Session, location_id):
    if location_id:
        touched_locations(db).add(location_id)


def _collect_touched(session: Session, flush_context, instances):
    for obj in session.new:
        if isinstance(obj, Marker):
            mark_touched(session, obj.location_id)

    for obj in session.deleted:
        if isinstance(obj, Marker):
            history = inspect(obj).attrs.location_id.history
            for location_id in history.sum():
                mark_touched(session, location_id)

    for obj in session.dirty:
        if not isinstance(obj, Marker):
            continue
        history = inspect(obj).attrs.location_id.history
        if history.has_changes():
            for location_id in list(history.added) + list(history.deleted):
                mark_touched(session, location_id)


def recompute_touched(db: Session) -> int:
    """Recompute every location the session has seen membership changes for"""
    from services.location.centroid import CentroidMaintainer
    from services.location.registry import LocationRegistry

    touched = touched_locations(db)
    if not touched:
        return 0

    maintainer = CentroidMaintainer(LocationRegistry(db))
    count = 0
    while touched:
        location_id = touched.pop()
        maintainer.recompute_safely(location_id)
        count += 1
    return count


def _recompute_before_commit(session: Session):
    # flush first so pending marker changes land in the touched set
    session.flush()
    recompute_touched(session)


def _clear_on_rollback(session: Session):
    session.info.pop(TOUCHED_KEY, None)


def install_membership_hooks(session_factory: sessionmaker):
    """Attach the hooks to a sessionmaker. Safe to call more than once."""
    if event.contains(session_factory, "before_flush", _collect_touched):
        return
    event.listen(session_factory, "before_flush", _collect_touched)
    event.listen(session_factory, "before_commit", _recompute_before_commit)
    event.listen(session_factory, "after_rollback", _clear_on_rollback)
    logger.debug("Membership hooks installed")
