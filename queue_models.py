# -*- coding: utf-8 -*-
"""Participants, pending slots and the validation shared by the fill engine.

A *slot* is a pending session of up to four players waiting for a court. The
pool is never stored on its own: it is whoever is not sitting in a slot or on
a court, held by ``court_queue.QueueState`` as an ordered list of ids.

The JSON helpers at the bottom define the layout of the state file written by
``run_fill.py``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set

SLOT_CAPACITY = 4
MODE_MIXED = "mixed"


class FillValidationError(ValueError):
    """Raised when a caller hands the engine an impossible state."""


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"


class Skill(str, Enum):
    NOVICE = "Novice"
    INTERMEDIATE = "Intermediate"
    ADVANCED = "Advanced"
    EXPERT = "Expert"


# Display order only; eligibility never compares ranks.
SKILL_RANK: Dict[Skill, int] = {
    Skill.NOVICE: 0,
    Skill.INTERMEDIATE: 1,
    Skill.ADVANCED: 2,
    Skill.EXPERT: 3,
}


def parse_gender(value) -> Gender:
    if isinstance(value, Gender):
        return value
    try:
        return Gender(str(value or "").strip().lower())
    except ValueError:
        raise FillValidationError(f"Unknown gender {value!r}") from None


def parse_skill(value) -> Skill:
    if isinstance(value, Skill):
        return value
    try:
        return Skill(str(value or "").strip().capitalize())
    except ValueError:
        raise FillValidationError(f"Unknown skill level {value!r}") from None


@dataclass
class Participant:
    id: str
    name: str
    gender: Gender
    skill: Skill
    queue_entered_at: datetime
    games_completed: int = 0
    # games_completed at the last Advanced<->Novice session; 0 = never paired
    novice_cooldown_mark: int = 0
    advanced_cooldown_mark: int = 0
    novice_history: Set[str] = field(default_factory=set)
    advanced_history: Set[str] = field(default_factory=set)

    def __post_init__(self) -> None:
        self.gender = parse_gender(self.gender)
        self.skill = parse_skill(self.skill)

    @property
    def skill_rank(self) -> int:
        return SKILL_RANK[self.skill]

    @property
    def is_expert(self) -> bool:
        return self.skill is Skill.EXPERT

    def label(self) -> str:
        return f"{self.name} ({self.skill.value}, {self.gender.value})"


@dataclass
class Slot:
    id: str
    sequence: int
    occupants: List[Participant] = field(default_factory=list)
    preferred_resources: Set[str] = field(default_factory=set)

    @property
    def occupant_ids(self) -> List[str]:
        return [p.id for p in self.occupants]

    @property
    def is_complete(self) -> bool:
        return len(self.occupants) >= SLOT_CAPACITY

    @property
    def open_places(self) -> int:
        return max(0, SLOT_CAPACITY - len(self.occupants))


def gender_counts(people: Iterable[Participant]) -> Dict[Gender, int]:
    counts = {Gender.MALE: 0, Gender.FEMALE: 0}
    for p in people:
        counts[p.gender] += 1
    return counts


def is_valid_terminal_composition(people: List[Participant]) -> bool:
    """True for 4/0, 0/4 and 2/2 once a slot holds four players."""
    if len(people) != SLOT_CAPACITY:
        return False
    counts = gender_counts(people)
    return (counts[Gender.MALE], counts[Gender.FEMALE]) in {(4, 0), (0, 4), (2, 2)}


# -------------------- Validation --------------------

def validate_cooldown_window(window: int) -> int:
    if isinstance(window, bool) or not isinstance(window, int):
        raise FillValidationError(f"Cooldown window must be an integer, got {window!r}")
    if window < 0:
        raise FillValidationError(f"Cooldown window must be >= 0, got {window}")
    return window


def validate_slot(slot: Slot) -> None:
    if len(slot.occupants) > SLOT_CAPACITY:
        raise FillValidationError(
            f"Slot {slot.id} holds {len(slot.occupants)} players (max {SLOT_CAPACITY})"
        )
    ids = slot.occupant_ids
    if len(set(ids)) != len(ids):
        raise FillValidationError(f"Slot {slot.id} lists the same player twice")


def validate_assignment(slots: Iterable[Slot], pool: Iterable[Participant]) -> None:
    """Check that nobody sits in two slots, or in a slot and the pool at once."""
    seen: Dict[str, str] = {}
    for slot in slots:
        validate_slot(slot)
        for pid in slot.occupant_ids:
            if pid in seen:
                raise FillValidationError(f"Player {pid} is in slots {seen[pid]} and {slot.id}")
            seen[pid] = slot.id
    pool_ids: Set[str] = set()
    for p in pool:
        if p.id in pool_ids:
            raise FillValidationError(f"Player {p.id} is listed twice in the pool")
        pool_ids.add(p.id)
        if p.id in seen:
            raise FillValidationError(f"Player {p.id} is both in the pool and in slot {seen[p.id]}")


# -------------------- State file layout --------------------

def format_timestamp(ts: Optional[datetime]) -> Optional[str]:
    return ts.isoformat() if ts is not None else None


def parse_timestamp(value) -> datetime:
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        raise FillValidationError(f"Bad timestamp {value!r}") from None


def participant_to_dict(p: Participant) -> dict:
    return {
        "id": p.id,
        "name": p.name,
        "gender": p.gender.value,
        "skill": p.skill.value,
        "queue_entered_at": format_timestamp(p.queue_entered_at),
        "games_completed": p.games_completed,
        "novice_cooldown_mark": p.novice_cooldown_mark,
        "advanced_cooldown_mark": p.advanced_cooldown_mark,
        "novice_history": sorted(p.novice_history),
        "advanced_history": sorted(p.advanced_history),
    }


def participant_from_dict(d: dict) -> Participant:
    pid = str(d.get("id") or "").strip()
    if not pid:
        raise FillValidationError(f"Participant without id: {d!r}")
    return Participant(
        id=pid,
        name=str(d.get("name") or pid),
        gender=parse_gender(d.get("gender")),
        skill=parse_skill(d.get("skill")),
        queue_entered_at=parse_timestamp(d.get("queue_entered_at")),
        games_completed=int(d.get("games_completed", 0) or 0),
        novice_cooldown_mark=int(d.get("novice_cooldown_mark", 0) or 0),
        advanced_cooldown_mark=int(d.get("advanced_cooldown_mark", 0) or 0),
        novice_history={str(x) for x in d.get("novice_history") or []},
        advanced_history={str(x) for x in d.get("advanced_history") or []},
    )


def slot_to_dict(slot: Slot) -> dict:
    return {
        "id": slot.id,
        "sequence": slot.sequence,
        "occupants": slot.occupant_ids,
        "preferred_resources": sorted(slot.preferred_resources),
    }


def slot_from_dict(d: dict, people: Dict[str, Participant]) -> Slot:
    occupants: List[Participant] = []
    for pid in d.get("occupants") or []:
        if pid not in people:
            raise FillValidationError(f"Slot {d.get('id')} references unknown player {pid}")
        occupants.append(people[pid])
    slot = Slot(
        id=str(d["id"]),
        sequence=int(d.get("sequence", 0)),
        occupants=occupants,
        preferred_resources={str(r) for r in d.get("preferred_resources") or []},
    )
    validate_slot(slot)
    return slot
