"""
Intervals persistence.

`IntervalsRepository` is the contract the sync engine depends on;
`SqlAlchemyIntervalsRepository` implements it on top of models.py.

Transaction boundaries:
- each sync-log write is its own transaction
- a profile upsert is one transaction
- each activity (scalar upsert + replace of its three child sets) is one
  transaction, so a failure mid-batch keeps the activities already saved
- rollup recomputation runs in its own transaction after persistence
"""
import logging
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Dict, Iterator, List, Optional, Protocol, Sequence, Set

from sqlalchemy import insert
from sqlalchemy.orm import Session, sessionmaker

from core.database import SessionLocal
from core.exceptions import PersistenceInvariantError
from models import (
    IntervalsActivity,
    IntervalsActivityBestEffort,
    IntervalsActivityInterval,
    IntervalsActivityStream,
    IntervalsAthleteProfile,
    IntervalsSyncLog,
)
from services import run_rollups
from services.activity_mapping import (
    IntervalsActivityAggregate,
    map_activity_values,
    map_athlete_to_profile_values,
    map_best_effort_row,
    map_interval_row,
    map_stream_row,
)
from services.dates import ensure_utc, utc_date, utc_now
from services.intervals_payloads import IntervalsAthlete

logger = logging.getLogger(__name__)


class IntervalsRepository(Protocol):
    def get_latest_connection_profile(self, user_id: str) -> Optional[Dict[str, Any]]: ...

    def get_connected_athlete_id(self, user_id: str) -> Optional[str]: ...

    def get_last_successful_sync(self, user_id: str) -> Optional[Dict[str, Any]]: ...

    def create_sync_log_started(
        self, *, user_id: str, athlete_id: Optional[str], started_at: datetime
    ) -> Optional[int]: ...

    def complete_sync_log_success(
        self, *, sync_log_id: int, athlete_id: Optional[str], completed_at: datetime, fetched_activity_count: int
    ) -> None: ...

    def complete_sync_log_failed(self, *, sync_log_id: int, completed_at: datetime, error_message: str) -> None: ...

    def upsert_athlete_profile(self, *, user_id: str, athlete: IntervalsAthlete, now: datetime) -> int: ...

    def upsert_activities(
        self, *, user_id: str, athlete_id: str, activities: Sequence[IntervalsActivityAggregate]
    ) -> Dict[str, Any]: ...

    def recompute_dashboard_run_rollups(self, user_id: str, affected_dates: Sequence[date]) -> Dict[str, int]: ...

    def recompute_dashboard_run_rollups_for_user(self, user_id: str) -> Dict[str, int]: ...

    def list_connected_user_ids(self) -> List[str]: ...


class SqlAlchemyIntervalsRepository:
    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self.session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db: Session = self.session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # --- Connection ---

    def get_latest_connection_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        with self._session() as db:
            profile = (
                db.query(IntervalsAthleteProfile)
                .filter(IntervalsAthleteProfile.user_id == user_id)
                .order_by(IntervalsAthleteProfile.updated_at.desc(), IntervalsAthleteProfile.id.desc())
                .first()
            )
            if profile is None:
                return None
            return {
                "intervals_athlete_id": profile.intervals_athlete_id,
                "name": profile.name,
                "first_name": profile.first_name,
                "last_name": profile.last_name,
                "created_at": ensure_utc(profile.created_at),
                "updated_at": ensure_utc(profile.updated_at),
            }

    def get_connected_athlete_id(self, user_id: str) -> Optional[str]:
        with self._session() as db:
            row = (
                db.query(IntervalsAthleteProfile.intervals_athlete_id)
                .filter(IntervalsAthleteProfile.user_id == user_id)
                .order_by(IntervalsAthleteProfile.updated_at.desc(), IntervalsAthleteProfile.id.desc())
                .first()
            )
            return row[0] if row else None

    def list_connected_user_ids(self) -> List[str]:
        with self._session() as db:
            rows = (
                db.query(IntervalsAthleteProfile.user_id)
                .distinct()
                .order_by(IntervalsAthleteProfile.user_id.asc())
                .all()
            )
            return [r[0] for r in rows]

    # --- Sync log ---

    def get_last_successful_sync(self, user_id: str) -> Optional[Dict[str, Any]]:
        with self._session() as db:
            row = (
                db.query(IntervalsSyncLog)
                .filter(
                    IntervalsSyncLog.user_id == user_id,
                    IntervalsSyncLog.status == "success",
                    IntervalsSyncLog.completed_at.isnot(None),
                )
                .order_by(IntervalsSyncLog.completed_at.desc(), IntervalsSyncLog.id.desc())
                .first()
            )
            if row is None:
                return None
            return {
                "started_at": ensure_utc(row.started_at),
                "completed_at": ensure_utc(row.completed_at),
            }

    def create_sync_log_started(
        self, *, user_id: str, athlete_id: Optional[str], started_at: datetime
    ) -> Optional[int]:
        with self._session() as db:
            row = IntervalsSyncLog(
                user_id=user_id,
                intervals_athlete_id=athlete_id,
                status="started",
                started_at=started_at,
                fetched_activity_count=0,
            )
            db.add(row)
            db.flush()
            return row.id

    def complete_sync_log_success(
        self, *, sync_log_id: int, athlete_id: Optional[str], completed_at: datetime, fetched_activity_count: int
    ) -> None:
        with self._session() as db:
            updated = (
                db.query(IntervalsSyncLog)
                .filter(IntervalsSyncLog.id == sync_log_id, IntervalsSyncLog.status == "started")
                .update(
                    {
                        "status": "success",
                        "intervals_athlete_id": athlete_id,
                        "completed_at": completed_at,
                        "fetched_activity_count": fetched_activity_count,
                    },
                    synchronize_session=False,
                )
            )
            if updated != 1:
                raise PersistenceInvariantError(f"Sync log {sync_log_id} could not be finalized as success.")

    def complete_sync_log_failed(self, *, sync_log_id: int, completed_at: datetime, error_message: str) -> None:
        with self._session() as db:
            updated = (
                db.query(IntervalsSyncLog)
                .filter(IntervalsSyncLog.id == sync_log_id, IntervalsSyncLog.status == "started")
                .update(
                    {"status": "failed", "completed_at": completed_at, "error_message": error_message},
                    synchronize_session=False,
                )
            )
            if updated != 1:
                raise PersistenceInvariantError(f"Sync log {sync_log_id} could not be finalized as failed.")

    # --- Profile ---

    def upsert_athlete_profile(self, *, user_id: str, athlete: IntervalsAthlete, now: datetime) -> int:
        values = map_athlete_to_profile_values(user_id=user_id, athlete=athlete, now=now)
        with self._session() as db:
            profile = (
                db.query(IntervalsAthleteProfile)
                .filter(
                    IntervalsAthleteProfile.user_id == user_id,
                    IntervalsAthleteProfile.intervals_athlete_id == athlete.id,
                )
                .first()
            )
            if profile is None:
                profile = IntervalsAthleteProfile(created_at=now, **values)
                db.add(profile)
            else:
                for key, value in values.items():
                    setattr(profile, key, value)
            db.flush()
            if profile.id is None:
                raise PersistenceInvariantError("Failed to upsert Intervals athlete profile.")
            return profile.id

    # --- Activities ---

    def upsert_activities(
        self, *, user_id: str, athlete_id: str, activities: Sequence[IntervalsActivityAggregate]
    ) -> Dict[str, Any]:
        """
        Persist a batch, one transaction per activity.

        Returns the number saved and the UTC calendar dates whose activity set
        changed (old and new start dates when an activity moved).
        """
        saved = 0
        affected: Set[date] = set()
        for activity in activities:
            affected.update(self._upsert_activity(user_id=user_id, athlete_id=athlete_id, activity=activity))
            saved += 1
        return {"saved_activity_count": saved, "affected_dates": sorted(affected)}

    def _upsert_activity(
        self, *, user_id: str, athlete_id: str, activity: IntervalsActivityAggregate
    ) -> Set[date]:
        now = utc_now()
        values = map_activity_values(user_id=user_id, athlete_id=athlete_id, activity=activity, now=now)
        affected: Set[date] = set()

        with self._session() as db:
            row = (
                db.query(IntervalsActivity)
                .filter(
                    IntervalsActivity.user_id == user_id,
                    IntervalsActivity.intervals_activity_id == activity.activity_id,
                )
                .first()
            )
            if row is None:
                row = IntervalsActivity(created_at=now, **values)
                db.add(row)
            else:
                if row.start_date is not None:
                    affected.add(utc_date(row.start_date))
                for key, value in values.items():
                    setattr(row, key, value)
            db.flush()
            if row.id is None:
                raise PersistenceInvariantError(f"Failed to upsert Intervals activity {activity.activity_id}.")

            self._replace_children(db, row.id, activity)

            if values["start_date"] is not None:
                affected.add(utc_date(values["start_date"]))

        logger.debug(f"Upserted Intervals activity {activity.activity_id} for user {user_id}")
        return affected

    def _replace_children(self, db: Session, activity_pk: int, activity: IntervalsActivityAggregate) -> None:
        for model in (IntervalsActivityInterval, IntervalsActivityStream, IntervalsActivityBestEffort):
            db.query(model).filter(model.activity_id == activity_pk).delete(synchronize_session=False)

        # Child keys are unique per activity; first occurrence wins.
        interval_rows = _unique_by(
            (map_interval_row(activity_pk, i) for i in activity.detail.icu_intervals), "interval_id"
        )
        stream_rows = _unique_by((map_stream_row(activity_pk, s) for s in activity.streams), "stream_type")
        effort_rows = [map_best_effort_row(activity_pk, e) for e in activity.best_efforts]

        if interval_rows:
            db.execute(insert(IntervalsActivityInterval), interval_rows)
        if stream_rows:
            db.execute(insert(IntervalsActivityStream), stream_rows)
        if effort_rows:
            db.execute(insert(IntervalsActivityBestEffort), effort_rows)

    # --- Derived tables ---

    def recompute_dashboard_run_rollups(self, user_id: str, affected_dates: Sequence[date]) -> Dict[str, int]:
        with self._session() as db:
            return run_rollups.recompute_dashboard_run_rollups(db, user_id, affected_dates)

    def recompute_dashboard_run_rollups_for_user(self, user_id: str) -> Dict[str, int]:
        with self._session() as db:
            return run_rollups.recompute_dashboard_run_rollups_for_user(db, user_id)


def _unique_by(rows, key: str) -> List[Dict[str, Any]]:
    seen = set()
    unique = []
    for row in rows:
        if row[key] in seen:
            continue
        seen.add(row[key])
        unique.append(row)
    return unique
