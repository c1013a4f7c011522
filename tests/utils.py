"""Builders shared by the queue tests."""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, List, Sequence

from court_queue import QueueState
from queue_models import Participant, Slot

NOW = datetime(2024, 5, 4, 19, 0, 0)


def waited(minutes: float) -> datetime:
    """Queue entry time for someone who has been waiting ``minutes``."""
    return NOW - timedelta(minutes=minutes)


def player(
    pid: str,
    skill: str = "Intermediate",
    gender: str = "male",
    *,
    wait: float = 0,
    games: int = 0,
    novice_mark: int = 0,
    advanced_mark: int = 0,
    novice_history: Iterable[str] = (),
    advanced_history: Iterable[str] = (),
    name: str | None = None,
) -> Participant:
    return Participant(
        id=pid,
        name=name or pid,
        gender=gender,
        skill=skill,
        queue_entered_at=waited(wait),
        games_completed=games,
        novice_cooldown_mark=novice_mark,
        advanced_cooldown_mark=advanced_mark,
        novice_history=set(novice_history),
        advanced_history=set(advanced_history),
    )


def slot(sid: str = "S1", occupants: Sequence[Participant] = (), sequence: int = 1) -> Slot:
    return Slot(id=sid, sequence=sequence, occupants=list(occupants))


def ids(people: Iterable[Participant]) -> List[str]:
    return [p.id for p in people]


class FixedRandom:
    """Stands in for ``random.Random``; ``random()`` always returns ``value``."""

    def __init__(self, value: float):
        self.value = value

    def random(self) -> float:
        return self.value


FORCE_MIXED = FixedRandom(0.0)
FORCE_SINGLE = FixedRandom(0.99)


class Clock:
    def __init__(self, start: datetime = NOW):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: float) -> datetime:
        self.now += timedelta(minutes=minutes)
        return self.now


def example_pool(p2_history: Iterable[str] = ()) -> List[Participant]:
    """Four players: Novice F, Advanced M, Intermediate M, Intermediate F."""
    return [
        player("P1", "Novice", "female", wait=50),
        player("P2", "Advanced", "male", wait=40, novice_history=p2_history),
        player("P3", "Intermediate", "male", wait=30),
        player("P4", "Intermediate", "female", wait=20),
    ]


def queue_with(
    people: Iterable[Participant],
    *,
    rng=FORCE_MIXED,
    clock: Clock | None = None,
    config: dict | None = None,
    courts: Iterable[str] = ("C1", "C2"),
) -> QueueState:
    """QueueState with ``people`` in the pool, each keeping its wait."""
    state = QueueState(config, rng=rng, clock=clock or Clock())
    for court in courts:
        state.add_court(court)
    for p in people:
        entered = p.queue_entered_at
        state.add_participant(p)
        p.queue_entered_at = entered
    return state
