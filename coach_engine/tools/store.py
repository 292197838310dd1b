"""Workout store — ABC + in-memory implementation backing the built-in tools."""

from __future__ import annotations

import asyncio
import time
import uuid
from abc import ABC, abstractmethod

from pydantic import BaseModel, Field

from coach_engine.engine.intent import normalize_exercise_lookup


class Exercise(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    name: str
    created_at: float = Field(default_factory=time.time)


class LoggedSet(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    exercise_id: str
    performed_at: float = Field(default_factory=time.time)
    reps: int | None = None
    duration_seconds: int | None = None
    weight: float | None = None
    unit: str | None = None


class WorkoutStore(ABC):
    """Async persistence for exercises and sets, partitioned by subject.

    Swap to a real database by implementing this ABC.
    """

    @abstractmethod
    async def list_exercises(self, subject: str) -> list[Exercise]: ...

    @abstractmethod
    async def ensure_exercise(self, subject: str, name: str) -> tuple[Exercise, bool]:
        """Return ``(exercise, created)`` matching *name*, creating it if needed."""

    @abstractmethod
    async def add_set(self, subject: str, logged: LoggedSet) -> LoggedSet: ...

    @abstractmethod
    async def list_sets(
        self,
        subject: str,
        *,
        since: float | None = None,
        until: float | None = None,
        exercise_id: str | None = None,
    ) -> list[LoggedSet]: ...


class InMemoryWorkoutStore(WorkoutStore):
    """Dict-backed store for single-process dev and tests."""

    def __init__(self) -> None:
        self._exercises: dict[str, list[Exercise]] = {}
        self._sets: dict[str, list[LoggedSet]] = {}
        self._lock = asyncio.Lock()

    async def list_exercises(self, subject: str) -> list[Exercise]:
        return list(self._exercises.get(subject, []))

    async def ensure_exercise(self, subject: str, name: str) -> tuple[Exercise, bool]:
        key = normalize_exercise_lookup(name)
        async with self._lock:
            exercises = self._exercises.setdefault(subject, [])
            for exercise in exercises:
                if normalize_exercise_lookup(exercise.name) == key:
                    return exercise, False
            exercise = Exercise(name=name.strip())
            exercises.append(exercise)
            return exercise, True

    async def add_set(self, subject: str, logged: LoggedSet) -> LoggedSet:
        async with self._lock:
            self._sets.setdefault(subject, []).append(logged)
        return logged

    async def list_sets(
        self,
        subject: str,
        *,
        since: float | None = None,
        until: float | None = None,
        exercise_id: str | None = None,
    ) -> list[LoggedSet]:
        sets = self._sets.get(subject, [])
        return [
            s for s in sets
            if (since is None or s.performed_at >= since)
            and (until is None or s.performed_at < until)
            and (exercise_id is None or s.exercise_id == exercise_id)
        ]
