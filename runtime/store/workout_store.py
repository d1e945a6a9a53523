"""WorkoutStore: the user's workout log, as seen by the RepCoach workflows.

It plays two collaborator roles:

    fetch_context(owner_id, seed) -> [WorkoutRecord]   (history source)
    commit(owner_id, plan) -> workout_id               (persistence)

Storage is a single JSON document, kept in memory and, if a data_dir is
configured, written to `data_dir/workouts.json` after every change:

    {
      "next_workout_id": 3,
      "next_exercise_id": 5,
      "exercises": [{"id": 1, "owner_id": 1, "name": "Squats"}, ...],
      "workouts": [
        {
          "id": 1, "owner_id": 1, "date": "2024-01-15",
          "with_instructor": false,
          "exercises": [
            {"exercise_id": 1, "reps": 10, "weight": 135, "time_seconds": null}
          ]
        }
      ]
    }

Exercise names are a per-owner catalog: committing a plan reuses an existing
entry with the same name or creates a new one.
"""

import calendar
import copy
import json
import logging
from datetime import date, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from core.coach.models import (
    LoggedExercise,
    PlannedExercise,
    WorkoutPlan,
    WorkoutRecord,
)


logger = logging.getLogger(__name__)

TIMEFRAMES = ("7d", "30d", "3m", "6m")


def _months_before(day: date, months: int) -> date:
    month_index = day.year * 12 + (day.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def timeframe_window(
    timeframe: Optional[str],
    today: date,
    default_days: int = 30,
) -> Tuple[date, date]:
    """Return the inclusive (start, end) dates covered by a timeframe."""
    if timeframe == "7d":
        return today - timedelta(days=7), today
    if timeframe == "30d":
        return today - timedelta(days=30), today
    if timeframe == "3m":
        return _months_before(today, 3), today
    if timeframe == "6m":
        return _months_before(today, 6), today
    return today - timedelta(days=default_days), today


def _empty_state() -> Dict[str, Any]:
    return {
        "next_workout_id": 1,
        "next_exercise_id": 1,
        "exercises": [],
        "workouts": [],
    }


class WorkoutStore:
    """In-memory + optional file-backed workout log.

    Parameters
    ----------
    data_dir:
        If provided, the log is loaded from and written to
        `data_dir/workouts.json`. Otherwise it only lives in memory.
    history_days:
        Window used by `fetch_context` when the seed names no timeframe.
    today:
        Date source, injectable for tests.
    """

    def __init__(
        self,
        data_dir: Optional[str] = None,
        history_days: int = 30,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._data_dir: Optional[Path] = Path(data_dir) if data_dir else None
        self.history_days = history_days
        self._today = today
        self._state: Dict[str, Any] = self._load()

    @property
    def _path(self) -> Optional[Path]:
        if self._data_dir is None:
            return None
        return self._data_dir / "workouts.json"

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_workouts(self, owner_id: int, start: date, end: date) -> List[WorkoutRecord]:
        """Owner's workouts with start <= date <= end, newest first."""
        names = {e["id"]: e["name"] for e in self._state["exercises"]}
        start_str, end_str = start.isoformat(), end.isoformat()

        rows = [
            w
            for w in self._state["workouts"]
            if w["owner_id"] == owner_id and start_str <= w["date"] <= end_str
        ]
        rows.sort(key=lambda w: (w["date"], w["id"]), reverse=True)

        return [
            WorkoutRecord(
                id=w["id"],
                date=w["date"],
                with_instructor=w.get("with_instructor", False),
                exercises=[
                    LoggedExercise(
                        name=names.get(item["exercise_id"], "unknown"),
                        reps=item["reps"],
                        weight=item.get("weight"),
                        time_seconds=item.get("time_seconds"),
                    )
                    for item in w["exercises"]
                ],
            )
            for w in rows
        ]

    def window_for(self, seed: Mapping[str, Any]) -> Tuple[date, date]:
        return timeframe_window(seed.get("timeframe"), self._today(), self.history_days)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add_workout(
        self,
        owner_id: int,
        workout_date: str,
        exercises: Sequence[Union[PlannedExercise, LoggedExercise]],
        with_instructor: bool = False,
    ) -> int:
        """Create a workout with one line item per exercise; return its id.

        All changes are applied to a copy of the log and swapped in only
        once they were persisted, so a failure leaves the log untouched.
        """
        state = copy.deepcopy(self._state)

        workout_id = state["next_workout_id"]
        state["next_workout_id"] += 1

        items = []
        for exercise in exercises:
            exercise_id = self._resolve_exercise(state, owner_id, exercise.name)
            items.append(
                {
                    "exercise_id": exercise_id,
                    "reps": exercise.reps,
                    "weight": exercise.weight,
                    "time_seconds": getattr(exercise, "time_seconds", None),
                }
            )

        state["workouts"].append(
            {
                "id": workout_id,
                "owner_id": owner_id,
                "date": workout_date,
                "with_instructor": with_instructor,
                "exercises": items,
            }
        )

        self._persist(state)
        self._state = state
        return workout_id

    @staticmethod
    def _resolve_exercise(state: Dict[str, Any], owner_id: int, name: str) -> int:
        for entry in state["exercises"]:
            if entry["owner_id"] == owner_id and entry["name"] == name:
                return entry["id"]

        exercise_id = state["next_exercise_id"]
        state["next_exercise_id"] += 1
        state["exercises"].append({"id": exercise_id, "owner_id": owner_id, "name": name})
        return exercise_id

    # ------------------------------------------------------------------
    # Workflow collaborator API
    # ------------------------------------------------------------------

    async def fetch_context(
        self,
        owner_id: int,
        seed: Mapping[str, Any],
    ) -> List[WorkoutRecord]:
        start, end = self.window_for(seed)
        return self.list_workouts(owner_id, start, end)

    async def commit(self, owner_id: int, plan: WorkoutPlan) -> int:
        workout_id = self.add_workout(owner_id, plan.date, plan.exercises)
        logger.info(
            "[WORKOUTS] Workout %s created via coach for user %s (%d exercises)",
            workout_id,
            owner_id,
            len(plan.exercises),
        )
        return workout_id

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> Dict[str, Any]:
        path = self._path
        if path is None or not path.is_file():
            return _empty_state()
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)

    def _persist(self, state: Dict[str, Any]) -> None:
        path = self._path
        if path is None:
            return

        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".json.tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(state, f, ensure_ascii=False, indent=2)
        tmp_path.replace(path)
