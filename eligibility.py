# -*- coding: utf-8 -*-
"""Eligibility evaluator: may this player join this slot right now?

Checks run in a fixed order and the first failure wins:

1. gender mode (single gender must match; mixed caps each gender at two)
2. expert exclusivity (Experts only play with Experts)
3. Advanced<->Novice cooldown and the permanent no-repeat rule

``occupants`` is everyone already committed to the slot plus whoever the
current fill pass has already picked. Nothing here mutates its inputs.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Union

from queue_models import (
    MODE_MIXED,
    FillValidationError,
    Gender,
    Participant,
    Skill,
    gender_counts,
    parse_gender,
)

MIXED_GENDER_CAP = 2

Mode = Union[Gender, str]


class ReasonCode(str, Enum):
    GENDER_MODE_MISMATCH = "GENDER_MODE_MISMATCH"
    EXPERT_EXCLUSIVITY = "EXPERT_EXCLUSIVITY"
    EXPERT_FALLBACK_EXCLUDED = "EXPERT_FALLBACK_EXCLUDED"
    NOVICE_COOLDOWN_ACTIVE = "NOVICE_COOLDOWN_ACTIVE"
    ADVANCED_COOLDOWN_ACTIVE = "ADVANCED_COOLDOWN_ACTIVE"
    REPEAT_PAIRING_BLOCKED = "REPEAT_PAIRING_BLOCKED"
    POOL_EXHAUSTED = "POOL_EXHAUSTED"
    SLOT_COMPLETE = "SLOT_COMPLETE"


@dataclass(frozen=True)
class Verdict:
    eligible: bool
    reason: Optional[ReasonCode] = None


ACCEPTED = Verdict(True)


def normalize_mode(mode: Mode) -> Mode:
    if isinstance(mode, str) and not isinstance(mode, Gender) and mode.strip().lower() == MODE_MIXED:
        return MODE_MIXED
    try:
        return parse_gender(mode)
    except FillValidationError:
        raise FillValidationError(f"Unknown composition mode {mode!r}") from None


def is_mixed(mode: Mode) -> bool:
    return normalize_mode(mode) == MODE_MIXED


def cooldown_active(games_completed: int, mark: int, window: int) -> bool:
    return mark > 0 and games_completed - mark < window


def _gender_ok(candidate: Participant, occupants: Sequence[Participant], mode: Mode) -> bool:
    if mode == MODE_MIXED:
        counts = gender_counts(occupants)
        return counts[candidate.gender] + 1 <= MIXED_GENDER_CAP
    return candidate.gender == mode


def _expert_ok(candidate: Participant, occupants: Sequence[Participant]) -> bool:
    if not occupants:
        return True
    has_expert = any(p.is_expert for p in occupants)
    has_other = any(not p.is_expert for p in occupants)
    if candidate.is_expert:
        return not (has_other and not has_expert)
    # all-Expert and non-empty
    return not (has_expert and not has_other)


def _advanced_novice_conflict(
    advanced: Participant,
    novice: Participant,
    window: int,
    *,
    advanced_first: bool,
) -> Optional[ReasonCode]:
    """Cooldown beats no-repeat; the candidate's own record is consulted first."""
    adv_cooling = cooldown_active(advanced.games_completed, advanced.novice_cooldown_mark, window)
    nov_cooling = cooldown_active(novice.games_completed, novice.advanced_cooldown_mark, window)
    cooling = [(adv_cooling, ReasonCode.NOVICE_COOLDOWN_ACTIVE), (nov_cooling, ReasonCode.ADVANCED_COOLDOWN_ACTIVE)]
    if not advanced_first:
        cooling.reverse()
    for active, code in cooling:
        if active:
            return code
    if novice.id in advanced.novice_history or advanced.id in novice.advanced_history:
        return ReasonCode.REPEAT_PAIRING_BLOCKED
    return None


def _tier_conflict(candidate: Participant, occupants: Sequence[Participant], window: int) -> Optional[ReasonCode]:
    if candidate.skill is Skill.ADVANCED:
        for other in occupants:
            if other.skill is Skill.NOVICE:
                code = _advanced_novice_conflict(candidate, other, window, advanced_first=True)
                if code:
                    return code
    elif candidate.skill is Skill.NOVICE:
        for other in occupants:
            if other.skill is Skill.ADVANCED:
                code = _advanced_novice_conflict(other, candidate, window, advanced_first=False)
                if code:
                    return code
    return None


def evaluate(
    candidate: Participant,
    occupants: Sequence[Participant],
    mode: Mode,
    cooldown_window: int = 3,
) -> Verdict:
    mode = normalize_mode(mode)
    if not _gender_ok(candidate, occupants, mode):
        return Verdict(False, ReasonCode.GENDER_MODE_MISMATCH)
    if not _expert_ok(candidate, occupants):
        return Verdict(False, ReasonCode.EXPERT_EXCLUSIVITY)
    code = _tier_conflict(candidate, occupants, cooldown_window)
    if code:
        return Verdict(False, code)
    return ACCEPTED


def blocking_counterparts(
    candidate: Participant,
    occupants: Sequence[Participant],
    cooldown_window: int = 3,
) -> List[str]:
    """Ids of the occupants that the tier rules keep ``candidate`` away from."""
    blocked: List[str] = []
    for other in occupants:
        if _tier_conflict(candidate, [other], cooldown_window):
            blocked.append(other.id)
    return blocked
