# -*- coding: utf-8 -*-
"""Court queue fill engine.

Given the waiting pool and the pending slots, pick who fills which slot.

Single slot (``fill_slot``):

* resolve the composition mode (same gender or mixed 2/2; an empty slot flips
  a weighted coin through the injected random source)
* rank the pool: longest wait first, Advanced males nudged ahead of same-wait
  peers when the slot leans that way
* walk the ranking once, keeping whoever passes ``eligibility.evaluate``
* still short in a single-gender mode with both genders at <=2: retry the
  leftovers as mixed, never taking an Expert in that retry

Every slot (``fill_all_slots``): repeat the single-slot fill over all pending
slots in sequence order on a staged copy, opening new slots while players are
left and no existing slot can take them, bounded by ``MAX_BATCH_ROUNDS``.

Both functions are pure: they return what should be added and never touch the
slots or the pool they were given. ``court_queue.QueueState`` applies results.
"""

from __future__ import annotations

import copy
import csv
import random
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from eligibility import (
    MIXED_GENDER_CAP,
    Mode,
    ReasonCode,
    blocking_counterparts,
    evaluate,
    is_mixed,
    normalize_mode,
)
from queue_models import (
    MODE_MIXED,
    SLOT_CAPACITY,
    FillValidationError,
    Gender,
    Participant,
    Skill,
    Slot,
    gender_counts,
    validate_assignment,
    validate_cooldown_window,
)

# =============== CONFIG ====================
DEFAULT_CONFIG = {
    # Completed games before an Advanced/Novice pair may share a slot again
    "COOLDOWN_WINDOW": 3,
    # Empty slots: chance of going mixed (2M/2F) instead of single gender
    "MIXED_PROBABILITY": 0.3,
    # Safety ceiling for fill_all_slots; reaching it is not an error
    "MAX_BATCH_ROUNDS": 100,
    # Seed for the random source built when none is injected
    "RANDOM_SEED": None,
    # Move Advanced males ahead of same-wait peers for male-leaning slots
    "ADVANCED_MALE_NUDGE": True,
}

PHASE_RESOLVE = "resolve"
PHASE_INITIAL = "initial"
PHASE_FALLBACK = "fallback"
PHASE_BATCH = "batch"


def deep_update(dst: dict, src: dict) -> dict:
    for key, value in (src or {}).items():
        if isinstance(value, dict) and isinstance(dst.get(key), dict):
            deep_update(dst[key], value)
        else:
            dst[key] = copy.deepcopy(value)
    return dst


def _validate_config(cfg: dict) -> None:
    unknown = sorted(set(cfg) - set(DEFAULT_CONFIG))
    if unknown:
        raise KeyError(f"Unknown config keys: {', '.join(unknown)}")
    validate_cooldown_window(cfg["COOLDOWN_WINDOW"])
    prob = cfg["MIXED_PROBABILITY"]
    if isinstance(prob, bool) or not isinstance(prob, (int, float)) or not 0.0 <= prob <= 1.0:
        raise ValueError(f"MIXED_PROBABILITY must be within [0, 1], got {prob!r}")
    rounds = cfg["MAX_BATCH_ROUNDS"]
    if isinstance(rounds, bool) or not isinstance(rounds, int) or rounds <= 0:
        raise ValueError(f"MAX_BATCH_ROUNDS must be a positive integer, got {rounds!r}")


def build_config(overrides: dict | None = None) -> dict:
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    if overrides:
        deep_update(cfg, overrides)
    _validate_config(cfg)
    return cfg


def make_rng(cfg: dict) -> random.Random:
    return random.Random(cfg.get("RANDOM_SEED"))

# ------------------------ Decision log --------------------------------

DECISION_FIELDS = ["Step", "Phase", "SlotId", "ParticipantId", "Mode", "Status", "Note"]


class DecisionLogger:
    def __init__(self):
        self.rows: List[dict] = []
        self.step = 0

    def log(self, phase: str, slot_id: str, participant_id: str, mode, status: str, note: str = ""):
        self.step += 1
        self.rows.append({
            "Step": self.step, "Phase": phase, "SlotId": slot_id,
            "ParticipantId": participant_id or "",
            "Mode": _mode_label(mode) if mode else "",
            "Status": status, "Note": note,
        })

    def write_csv(self, out: Path):
        out.parent.mkdir(parents=True, exist_ok=True)
        with out.open("w", newline="", encoding="utf-8") as f:
            w = csv.DictWriter(f, fieldnames=DECISION_FIELDS)
            w.writeheader()
            for r in self.rows:
                w.writerow({k: r.get(k, "") for k in DECISION_FIELDS})


def _mode_label(mode) -> str:
    return mode.value if isinstance(mode, Gender) else str(mode)


def _log(logger: Optional[DecisionLogger], *args, **kwargs) -> None:
    if logger is not None:
        logger.log(*args, **kwargs)

# ------------------------ Results -------------------------------------

@dataclass(frozen=True)
class Rejection:
    participant_id: Optional[str]
    code: ReasonCode
    phase: str


@dataclass
class FillResult:
    slot_id: str
    added: List[Participant]
    reasons: List[Rejection]
    mode: Mode
    resolved_mode: Mode
    resolver_fallback: bool = False
    fallback_used: bool = False
    final_size: int = 0

    @property
    def added_ids(self) -> List[str]:
        return [p.id for p in self.added]

    @property
    def reason_codes(self) -> List[ReasonCode]:
        return [r.code for r in self.reasons]

    def reasons_for(self, participant_id: str) -> List[ReasonCode]:
        return [r.code for r in self.reasons if r.participant_id == participant_id]

    @property
    def outcome(self) -> str:
        if not self.added and ReasonCode.SLOT_COMPLETE in self.reason_codes:
            return "already_complete"
        if not self.added:
            return "no_eligible_candidates"
        if self.final_size >= SLOT_CAPACITY:
            return "complete"
        return "partial"


@dataclass
class BatchResult:
    additions: Dict[str, List[Participant]] = field(default_factory=dict)
    created_slots: List[Slot] = field(default_factory=list)
    slot_results: Dict[str, List[FillResult]] = field(default_factory=dict)
    rounds: int = 0
    ceiling_reached: bool = False
    unassigned: List[str] = field(default_factory=list)

    @property
    def created_slot_ids(self) -> List[str]:
        return [s.id for s in self.created_slots]

    @property
    def added_ids(self) -> Dict[str, List[str]]:
        return {sid: [p.id for p in people] for sid, people in self.additions.items()}

    def total_added(self) -> int:
        return sum(len(v) for v in self.additions.values())

# ------------------------ Ranking --------------------------------------

def _is_advanced_male(p: Participant) -> bool:
    return p.gender is Gender.MALE and p.skill is Skill.ADVANCED


def rank_candidates(
    pool: Iterable[Participant],
    mode: Mode | None = None,
    occupants: Sequence[Participant] = (),
    *,
    nudge: bool = True,
) -> List[Participant]:
    """Longest wait first. The Advanced-male nudge only reorders equal waits."""
    leaning_male = mode is not None and normalize_mode(mode) is Gender.MALE
    nudged = nudge and (leaning_male or any(_is_advanced_male(p) for p in occupants))

    def key(p: Participant) -> Tuple[datetime, int]:
        affinity = 0 if nudged and _is_advanced_male(p) else 1
        return (p.queue_entered_at, affinity)

    return sorted(pool, key=key)

# ------------------------ Composition ----------------------------------

def _longest_waiting_gender(pool: Sequence[Participant]) -> Gender:
    earliest: Dict[Gender, datetime] = {}
    for p in pool:
        if p.gender not in earliest or p.queue_entered_at < earliest[p.gender]:
            earliest[p.gender] = p.queue_entered_at
    male = earliest.get(Gender.MALE)
    female = earliest.get(Gender.FEMALE)
    if female is None:
        return Gender.MALE
    if male is None:
        return Gender.FEMALE
    return Gender.MALE if male <= female else Gender.FEMALE


def resolve_mode(
    occupants: Sequence[Participant],
    ranked_pool: Sequence[Participant],
    rng: random.Random,
    mixed_probability: float = 0.3,
) -> Tuple[Mode, bool]:
    """Return ``(mode, is_fallback)`` for a slot holding ``occupants``.

    Mixed is sticky once both genders sit in the slot. A one-gender slot keeps
    its gender while enough same-gender players remain and drops to mixed
    only where 2/2 is still reachable. Empty slots draw from ``rng``.
    """
    counts = gender_counts(occupants)
    if counts[Gender.MALE] and counts[Gender.FEMALE]:
        return MODE_MIXED, False

    if not occupants:
        if rng.random() < mixed_probability:
            return MODE_MIXED, False
        return _longest_waiting_gender(ranked_pool), False

    gender = Gender.MALE if counts[Gender.MALE] else Gender.FEMALE
    count = counts[gender]
    if count >= SLOT_CAPACITY:
        return gender, False

    if count == 2:
        available = sum(1 for p in ranked_pool if p.gender is gender)
        return (gender, False) if available >= 2 else (MODE_MIXED, True)

    # 1 or 3 of one gender: only non-Experts count, even for an all-Expert slot
    available = sum(1 for p in ranked_pool if p.gender is gender and not p.is_expert)
    if available >= SLOT_CAPACITY - count:
        return gender, False
    if count <= MIXED_GENDER_CAP:
        return MODE_MIXED, True
    return gender, False

# ------------------------ Single slot ----------------------------------

def fill_slot(
    slot: Slot,
    pool: Sequence[Participant],
    cooldown_window: int | None = None,
    *,
    rng: random.Random | None = None,
    config: dict | None = None,
    logger: DecisionLogger | None = None,
) -> FillResult:
    cfg = config if config is not None else build_config()
    window = validate_cooldown_window(cfg["COOLDOWN_WINDOW"] if cooldown_window is None else cooldown_window)
    validate_assignment([slot], pool)
    rng = rng if rng is not None else make_rng(cfg)

    occupants = list(slot.occupants)
    by_wait = rank_candidates(pool)
    mode, resolver_fallback = resolve_mode(occupants, by_wait, rng, cfg["MIXED_PROBABILITY"])
    resolved_mode = mode
    _log(logger, PHASE_RESOLVE, slot.id, "", mode,
         "Mode resolved (fallback)" if resolver_fallback else "Mode resolved",
         f"occupants={len(occupants)} pool={len(pool)}")

    needed = SLOT_CAPACITY - len(occupants)
    if needed <= 0:
        _log(logger, PHASE_RESOLVE, slot.id, "", mode, "Already complete")
        return FillResult(
            slot_id=slot.id, added=[], reasons=[Rejection(None, ReasonCode.SLOT_COMPLETE, PHASE_RESOLVE)],
            mode=mode, resolved_mode=resolved_mode, resolver_fallback=resolver_fallback,
            final_size=len(occupants),
        )

    ranked = rank_candidates(pool, mode, occupants, nudge=cfg["ADVANCED_MALE_NUDGE"])
    tentative: List[Participant] = []
    taken: Set[str] = set()
    reasons: List[Rejection] = []

    def walk(current_mode: Mode, phase: str, skip_experts: bool) -> None:
        for cand in ranked:
            if len(tentative) >= needed:
                return
            if cand.id in taken:
                continue
            if skip_experts and cand.is_expert:
                reasons.append(Rejection(cand.id, ReasonCode.EXPERT_FALLBACK_EXCLUDED, phase))
                _log(logger, phase, slot.id, cand.id, current_mode, "Rejected",
                     ReasonCode.EXPERT_FALLBACK_EXCLUDED.value)
                continue
            present = occupants + tentative
            verdict = evaluate(cand, present, current_mode, window)
            if verdict.eligible:
                tentative.append(cand)
                taken.add(cand.id)
                _log(logger, phase, slot.id, cand.id, current_mode, "Accepted", cand.label())
            else:
                reasons.append(Rejection(cand.id, verdict.reason, phase))
                note = verdict.reason.value
                blockers = blocking_counterparts(cand, present, window)
                if blockers:
                    note += f" (with {', '.join(blockers)})"
                _log(logger, phase, slot.id, cand.id, current_mode, "Rejected", note)

    walk(mode, PHASE_INITIAL, skip_experts=False)

    fallback_used = False
    if len(tentative) < needed and not is_mixed(mode):
        counts = gender_counts(occupants + tentative)
        if all(c <= MIXED_GENDER_CAP for c in counts.values()):
            mode = MODE_MIXED
            fallback_used = True
            _log(logger, PHASE_FALLBACK, slot.id, "", mode, "Switched to mixed",
                 f"short by {needed - len(tentative)}")
            walk(mode, PHASE_FALLBACK, skip_experts=True)

    if len(tentative) < needed:
        phase = PHASE_FALLBACK if fallback_used else PHASE_INITIAL
        reasons.append(Rejection(None, ReasonCode.POOL_EXHAUSTED, phase))
        _log(logger, phase, slot.id, "", mode, "Short",
             f"added {len(tentative)} of {needed}")

    # presentation order only
    added = sorted(tentative, key=lambda p: -p.skill_rank)
    return FillResult(
        slot_id=slot.id,
        added=added,
        reasons=reasons,
        mode=mode,
        resolved_mode=resolved_mode,
        resolver_fallback=resolver_fallback,
        fallback_used=fallback_used,
        final_size=len(occupants) + len(added),
    )

# ------------------------ Every slot -----------------------------------

def next_slot_id(existing: Iterable[str], sequence: int) -> str:
    ids = set(existing)
    n = sequence
    while f"S{n}" in ids:
        n += 1
    return f"S{n}"


def fill_all_slots(
    slots: Sequence[Slot],
    pool: Sequence[Participant],
    cooldown_window: int | None = None,
    *,
    rng: random.Random | None = None,
    config: dict | None = None,
    logger: DecisionLogger | None = None,
    reserved_ids: Iterable[str] = (),
    start_sequence: int = 1,
) -> BatchResult:
    """Fill every pending slot in one staged pass.

    ``reserved_ids`` are slot ids the caller already uses elsewhere so
    synthesized ids never collide with them. New slots get sequence numbers
    from ``start_sequence`` or one past the highest pending slot, whichever is
    larger.
    """
    cfg = config if config is not None else build_config()
    window = validate_cooldown_window(cfg["COOLDOWN_WINDOW"] if cooldown_window is None else cooldown_window)
    validate_assignment(slots, pool)
    rng = rng if rng is not None else make_rng(cfg)
    max_rounds = cfg["MAX_BATCH_ROUNDS"]

    ordered = sorted(slots, key=lambda s: s.sequence)
    staged: Dict[str, Slot] = {
        s.id: replace(s, occupants=list(s.occupants), preferred_resources=set(s.preferred_resources))
        for s in ordered
    }
    if len(staged) != len(ordered):
        raise FillValidationError("Duplicate slot ids in fill_all_slots")
    order: List[str] = [s.id for s in ordered]
    used_ids: Set[str] = set(order) | set(reserved_ids)
    created: List[str] = []
    spoken_for: Set[str] = set()
    additions: Dict[str, List[Participant]] = {}
    slot_results: Dict[str, List[FillResult]] = defaultdict(list)
    next_sequence = max(max((s.sequence for s in ordered), default=0) + 1, start_sequence)
    rounds = 0
    ceiling_reached = False

    def remaining() -> List[Participant]:
        return [p for p in pool if p.id not in spoken_for]

    while remaining():
        if rounds >= max_rounds:
            ceiling_reached = True
            _log(logger, PHASE_BATCH, "", "", None, "Round ceiling reached",
                 f"{len(remaining())} players left after {rounds} rounds")
            break
        rounds += 1
        absorbed: Dict[str, bool] = {}
        for sid in order:
            slot = staged[sid]
            if slot.is_complete:
                continue
            available = remaining()
            if not available:
                break
            result = fill_slot(slot, available, window, rng=rng, config=cfg, logger=logger)
            slot_results[sid].append(result)
            absorbed[sid] = bool(result.added)
            if result.added:
                slot.occupants.extend(result.added)
                additions.setdefault(sid, []).extend(result.added)
                spoken_for.update(p.id for p in result.added)

        if not remaining():
            break
        stuck = all(staged[sid].is_complete or not absorbed.get(sid, False) for sid in order)
        if not stuck:
            continue
        if created and not staged[created[-1]].occupants:
            # a fresh slot took nobody; another one would not either
            sid = created.pop()
            order.remove(sid)
            del staged[sid]
            slot_results.pop(sid, None)
            _log(logger, PHASE_BATCH, sid, "", None, "Discarded empty slot",
                 f"{len(remaining())} players left unassigned")
            break
        sid = next_slot_id(used_ids, next_sequence)
        used_ids.add(sid)
        staged[sid] = Slot(id=sid, sequence=next_sequence)
        order.append(sid)
        created.append(sid)
        _log(logger, PHASE_BATCH, sid, "", None, "Created slot", f"sequence={next_sequence} round={rounds}")
        next_sequence += 1

    # the ceiling can stop the pass right after a slot was opened
    for sid in [s for s in created if not staged[s].occupants]:
        created.remove(sid)
        slot_results.pop(sid, None)

    return BatchResult(
        additions=additions,
        created_slots=[staged[sid] for sid in created],
        slot_results=dict(slot_results),
        rounds=rounds,
        ceiling_reached=ceiling_reached,
        unassigned=[p.id for p in remaining()],
    )
