# -*- coding: utf-8 -*-
"""Queue state: the one place that changes the pool, the slots and the courts.

``fill_engine`` only proposes additions; ``QueueState`` applies them under a
lock, records them in the ledger and can take them back. Every public method
holds ``self.lock`` for its whole body, so a fill, batch or undo is never seen
half applied. Helpers starting with ``_`` expect the lock to be held already.
"""

from __future__ import annotations

import random
import threading
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

import fill_engine
from fill_engine import BatchResult, DecisionLogger, FillResult, build_config, make_rng, next_slot_id
from fill_ledger import KIND_BATCH, KIND_FILL, FillLedger, FillRecord
from queue_models import (
    SLOT_CAPACITY,
    FillValidationError,
    Participant,
    Skill,
    Slot,
    participant_from_dict,
    participant_to_dict,
    slot_from_dict,
    slot_to_dict,
    validate_assignment,
)


class QueueState:
    def __init__(
        self,
        config: dict | None = None,
        *,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
        logger: DecisionLogger | None = None,
    ):
        self.config = build_config(config)
        self.rng = rng if rng is not None else make_rng(self.config)
        self.clock = clock or datetime.now
        self.logger = logger
        self.lock = threading.Lock()
        self.people: Dict[str, Participant] = {}
        self.pool: List[str] = []
        self.slots: Dict[str, Slot] = {}
        # court id -> ids of the players on it; [] means free
        self.courts: Dict[str, List[str]] = {}
        self.ledger = FillLedger()
        self.next_sequence = 1

    # ---------------- lookups ----------------

    def _person(self, participant_id: str) -> Participant:
        if participant_id not in self.people:
            raise KeyError(f"Unknown participant {participant_id}")
        return self.people[participant_id]

    def _slot(self, slot_id: str) -> Slot:
        if slot_id not in self.slots:
            raise KeyError(f"Unknown slot {slot_id}")
        return self.slots[slot_id]

    def _location(self, participant_id: str) -> Optional[str]:
        if participant_id in self.pool:
            return "pool"
        for slot in self.slots.values():
            if participant_id in slot.occupant_ids:
                return f"slot {slot.id}"
        for court_id, ids in self.courts.items():
            if participant_id in ids:
                return f"court {court_id}"
        return None

    def location(self, participant_id: str) -> Optional[str]:
        with self.lock:
            self._person(participant_id)
            return self._location(participant_id)

    def available_pool(self) -> List[Participant]:
        with self.lock:
            return [self.people[pid] for pid in self.pool]

    def pending_slots(self) -> List[Slot]:
        with self.lock:
            return sorted(self.slots.values(), key=lambda s: s.sequence)

    # ---------------- pool ----------------

    def _enter_pool(self, participant_id: str) -> bool:
        person = self._person(participant_id)
        where = self._location(participant_id)
        if where == "pool":
            return False
        if where is not None:
            raise FillValidationError(f"Player {participant_id} is already in {where}")
        person.queue_entered_at = self.clock()
        self.pool.append(participant_id)
        return True

    def add_participant(self, participant: Participant, *, enter_pool: bool = True) -> Participant:
        with self.lock:
            if participant.id in self.people:
                raise FillValidationError(f"Player {participant.id} already exists")
            self.people[participant.id] = participant
            if enter_pool:
                self._enter_pool(participant.id)
            return participant

    def enter_pool(self, participant_id: str) -> bool:
        """Put a known player at the back of the pool; False if already there."""
        with self.lock:
            return self._enter_pool(participant_id)

    def withdraw(self, participant_id: str) -> None:
        with self.lock:
            self._person(participant_id)
            if participant_id in self.pool:
                self.pool.remove(participant_id)
            else:
                for slot in self.slots.values():
                    if participant_id in slot.occupant_ids:
                        slot.occupants = [p for p in slot.occupants if p.id != participant_id]
                        break
                else:
                    raise FillValidationError(f"Player {participant_id} is not waiting")
            self.ledger.discard_participant(participant_id)

    def clear_idle_times(self) -> int:
        with self.lock:
            now = self.clock()
            for pid in self.pool:
                self.people[pid].queue_entered_at = now
            return len(self.pool)

    # ---------------- slots ----------------

    def _new_slot(self, preferred_resources: Iterable[str] = ()) -> Slot:
        sid = next_slot_id(self.slots, self.next_sequence)
        slot = Slot(id=sid, sequence=self.next_sequence, preferred_resources=set(preferred_resources))
        self.slots[sid] = slot
        self.next_sequence += 1
        return slot

    def create_slot(self, preferred_resources: Iterable[str] = ()) -> Slot:
        with self.lock:
            return self._new_slot(preferred_resources)

    def delete_slot(self, slot_id: str) -> List[str]:
        """Drop a slot; its players go back to the pool keeping their wait."""
        with self.lock:
            slot = self._slot(slot_id)
            returned = slot.occupant_ids
            del self.slots[slot_id]
            self.pool.extend(returned)
            self.ledger.discard_slot(slot_id)
            return returned

    def remove_from_slot(self, slot_id: str, participant_id: str) -> None:
        with self.lock:
            slot = self._slot(slot_id)
            if participant_id not in slot.occupant_ids:
                raise FillValidationError(f"Player {participant_id} is not in slot {slot_id}")
            slot.occupants = [p for p in slot.occupants if p.id != participant_id]
            self.pool.append(participant_id)
            self.ledger.discard_participant(participant_id)

    def add_to_slot(self, slot_id: str, participant_id: str) -> None:
        """Manual placement: capacity is enforced, the fill rules are not."""
        with self.lock:
            slot = self._slot(slot_id)
            self._person(participant_id)
            if participant_id not in self.pool:
                raise FillValidationError(f"Player {participant_id} is not in the pool")
            if slot.is_complete:
                raise FillValidationError(f"Slot {slot_id} already holds {SLOT_CAPACITY} players")
            self.pool.remove(participant_id)
            slot.occupants.append(self.people[participant_id])

    # ---------------- fill / undo ----------------

    def _take_from_pool(self, ids: Iterable[str]) -> Dict[str, int]:
        wanted = set(ids)
        positions = {pid: i for i, pid in enumerate(self.pool) if pid in wanted}
        self.pool = [pid for pid in self.pool if pid not in wanted]
        return positions

    def fill_slot(self, slot_id: str) -> FillResult:
        with self.lock:
            slot = self._slot(slot_id)
            pool = [self.people[pid] for pid in self.pool]
            result = fill_engine.fill_slot(slot, pool, rng=self.rng, config=self.config, logger=self.logger)
            if result.added:
                positions = self._take_from_pool(result.added_ids)
                slot.occupants.extend(result.added)
                self.ledger.commit(
                    KIND_FILL, {slot_id: result.added_ids},
                    pool_positions=positions, timestamp=self.clock(),
                )
            return result

    def fill_all_slots(self) -> BatchResult:
        with self.lock:
            pending = sorted(self.slots.values(), key=lambda s: s.sequence)
            pool = [self.people[pid] for pid in self.pool]
            result = fill_engine.fill_all_slots(
                pending, pool, rng=self.rng, config=self.config, logger=self.logger,
                start_sequence=self.next_sequence,
            )
            added_ids = result.added_ids
            positions = self._take_from_pool(pid for ids in added_ids.values() for pid in ids)
            created = set(result.created_slot_ids)
            for sid, people in result.additions.items():
                if sid not in created:
                    self.slots[sid].occupants.extend(people)
            for slot in result.created_slots:
                self.slots[slot.id] = slot
                self.next_sequence = max(self.next_sequence, slot.sequence + 1)
            if added_ids or created:
                self.ledger.commit(
                    KIND_BATCH, added_ids, result.created_slot_ids,
                    pool_positions=positions, timestamp=self.clock(),
                )
            return result

    def _undo(self, kind: str) -> Optional[FillRecord]:
        record = self.ledger.undo(kind)
        if record is None:
            return None
        returned: Dict[str, int] = {}
        for sid, ids in record.additions.items():
            slot = self.slots.get(sid)
            if slot is None:
                continue
            recorded = set(ids)
            returned.update({pid: record.pool_positions.get(pid, len(self.pool)) for pid in slot.occupant_ids if pid in recorded})
            slot.occupants = [p for p in slot.occupants if p.id not in recorded]
        for sid in record.created_slot_ids:
            slot = self.slots.get(sid)
            if slot is not None and not slot.occupants:
                del self.slots[sid]
        # inserting by ascending index rebuilds the pre-commit order
        for pid, pos in sorted(returned.items(), key=lambda kv: kv[1]):
            self.pool.insert(min(pos, len(self.pool)), pid)
        if self.logger is not None:
            for sid, ids in record.additions.items():
                self.logger.log("undo", sid, "", None, f"Undo {kind}", ", ".join(ids))
        return record

    def undo_last_fill(self) -> Optional[FillRecord]:
        with self.lock:
            return self._undo(KIND_FILL)

    def undo_last_batch(self) -> Optional[FillRecord]:
        with self.lock:
            return self._undo(KIND_BATCH)

    # ---------------- courts ----------------

    def add_court(self, resource_id: str) -> None:
        with self.lock:
            self.courts.setdefault(resource_id, [])

    def free_courts(self) -> List[str]:
        with self.lock:
            return [cid for cid, ids in self.courts.items() if not ids]

    def promote_slot(self, slot_id: str, resource_id: str) -> List[str]:
        """Start a slot's session on a court and record Advanced/Novice pairings."""
        with self.lock:
            slot = self._slot(slot_id)
            if not slot.occupants:
                raise FillValidationError(f"Slot {slot_id} is empty")
            if resource_id not in self.courts:
                raise KeyError(f"Unknown court {resource_id}")
            if self.courts[resource_id]:
                raise FillValidationError(f"Court {resource_id} is busy")
            advanced = [p for p in slot.occupants if p.skill is Skill.ADVANCED]
            novices = [p for p in slot.occupants if p.skill is Skill.NOVICE]
            for a in advanced:
                for n in novices:
                    a.novice_history.add(n.id)
                    n.advanced_history.add(a.id)
            if advanced and novices:
                # mark = the game count this session brings them to, so 0 keeps
                # meaning "never paired"; cooldown runs COOLDOWN_WINDOW finished games
                for a in advanced:
                    a.novice_cooldown_mark = a.games_completed + 1
                for n in novices:
                    n.advanced_cooldown_mark = n.games_completed + 1
            self.courts[resource_id] = slot.occupant_ids
            del self.slots[slot_id]
            self.ledger.discard_slot(slot_id)
            return list(self.courts[resource_id])

    def finish_session(self, resource_id: str) -> List[str]:
        """End the game on a court; its players rejoin the back of the pool."""
        with self.lock:
            if resource_id not in self.courts:
                raise KeyError(f"Unknown court {resource_id}")
            ids = self.courts[resource_id]
            if not ids:
                raise FillValidationError(f"Court {resource_id} is free")
            now = self.clock()
            for pid in ids:
                person = self.people[pid]
                person.games_completed += 1
                person.queue_entered_at = now
                self.pool.append(pid)
            self.courts[resource_id] = []
            return ids

    # ---------------- persistence ----------------

    def to_dict(self) -> dict:
        with self.lock:
            return {
                "participants": [participant_to_dict(p) for p in self.people.values()],
                "pool": list(self.pool),
                "slots": [slot_to_dict(s) for s in sorted(self.slots.values(), key=lambda s: s.sequence)],
                "courts": {cid: list(ids) for cid, ids in self.courts.items()},
                "next_sequence": self.next_sequence,
                "ledger": self.ledger.to_dict(),
            }

    @classmethod
    def from_dict(
        cls,
        d: dict,
        config: dict | None = None,
        *,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
        logger: DecisionLogger | None = None,
    ) -> "QueueState":
        state = cls(config, rng=rng, clock=clock, logger=logger)
        for raw in d.get("participants") or []:
            p = participant_from_dict(raw)
            if p.id in state.people:
                raise FillValidationError(f"Player {p.id} is listed twice")
            state.people[p.id] = p
        for pid in d.get("pool") or []:
            state._person(pid)
        state.pool = list(d.get("pool") or [])
        for raw in d.get("slots") or []:
            slot = slot_from_dict(raw, state.people)
            if slot.id in state.slots:
                raise FillValidationError(f"Slot {slot.id} is listed twice")
            state.slots[slot.id] = slot
        validate_assignment(state.slots.values(), [state.people[pid] for pid in state.pool])
        placed = set(state.pool) | {pid for s in state.slots.values() for pid in s.occupant_ids}
        for cid, ids in (d.get("courts") or {}).items():
            for pid in ids:
                state._person(pid)
                if pid in placed:
                    raise FillValidationError(f"Player {pid} is on court {cid} and waiting too")
                placed.add(pid)
            state.courts[str(cid)] = list(ids)
        top = max((s.sequence for s in state.slots.values()), default=0)
        state.next_sequence = max(int(d.get("next_sequence") or 1), top + 1)
        state.ledger = FillLedger.from_dict(d.get("ledger"))
        return state
