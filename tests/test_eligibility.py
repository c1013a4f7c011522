import pytest

from eligibility import ReasonCode, blocking_counterparts, cooldown_active, evaluate, normalize_mode
from queue_models import MODE_MIXED, FillValidationError, Gender
from tests.utils import player


def test_single_gender_mode_rejects_other_gender() -> None:
    verdict = evaluate(player("F1", gender="female"), [], "male")
    assert not verdict.eligible
    assert verdict.reason is ReasonCode.GENDER_MODE_MISMATCH
    assert evaluate(player("M1"), [], Gender.MALE).eligible


def test_mixed_mode_caps_each_gender_at_two() -> None:
    occupants = [player("M1"), player("M2"), player("F1", gender="female")]
    assert evaluate(player("M3"), occupants, "mixed").reason is ReasonCode.GENDER_MODE_MISMATCH
    assert evaluate(player("F2", gender="female"), occupants, "mixed").eligible


def test_expert_cannot_join_non_expert_slot() -> None:
    verdict = evaluate(player("E1", "Expert"), [player("M1")], "male")
    assert verdict.reason is ReasonCode.EXPERT_EXCLUSIVITY


def test_non_expert_cannot_join_all_expert_slot() -> None:
    verdict = evaluate(player("M1", "Advanced"), [player("E1", "Expert")], "male")
    assert verdict.reason is ReasonCode.EXPERT_EXCLUSIVITY
    assert evaluate(player("E2", "Expert"), [player("E1", "Expert")], "male").eligible


def test_expert_may_open_an_empty_slot() -> None:
    assert evaluate(player("E1", "Expert"), [], "male").eligible


def test_gender_is_checked_before_expert_rule() -> None:
    verdict = evaluate(player("E1", "Expert", "female"), [player("M1")], "male")
    assert verdict.reason is ReasonCode.GENDER_MODE_MISMATCH


def test_advanced_in_cooldown_is_kept_from_novice() -> None:
    advanced = player("A1", "Advanced", games=5, novice_mark=4)
    verdict = evaluate(advanced, [player("N1", "Novice")], "male", cooldown_window=3)
    assert verdict.reason is ReasonCode.NOVICE_COOLDOWN_ACTIVE


def test_cooldown_expires_after_window() -> None:
    advanced = player("A1", "Advanced", games=7, novice_mark=4)
    assert evaluate(advanced, [player("N1", "Novice")], "male", cooldown_window=3).eligible


def test_cooldown_only_matters_next_to_a_novice() -> None:
    advanced = player("A1", "Advanced", games=5, novice_mark=4)
    assert evaluate(advanced, [player("M1")], "male").eligible


def test_novice_candidate_checks_present_advanced_cooldown() -> None:
    present = player("A1", "Advanced", games=2, novice_mark=2)
    verdict = evaluate(player("N1", "Novice"), [present], "male")
    assert verdict.reason is ReasonCode.NOVICE_COOLDOWN_ACTIVE


def test_novice_own_cooldown_reported_first() -> None:
    novice = player("N1", "Novice", games=3, advanced_mark=3)
    present = player("A1", "Advanced", games=2, novice_mark=2)
    verdict = evaluate(novice, [present], "male")
    assert verdict.reason is ReasonCode.ADVANCED_COOLDOWN_ACTIVE


def test_repeat_pairing_blocked_in_both_directions() -> None:
    advanced = player("A1", "Advanced", novice_history={"N1"})
    novice = player("N1", "Novice")
    assert evaluate(advanced, [novice], "male").reason is ReasonCode.REPEAT_PAIRING_BLOCKED
    assert evaluate(novice, [advanced], "male").reason is ReasonCode.REPEAT_PAIRING_BLOCKED


def test_cooldown_reported_before_repeat() -> None:
    advanced = player("A1", "Advanced", games=1, novice_mark=1, novice_history={"N1"})
    verdict = evaluate(advanced, [player("N1", "Novice")], "male")
    assert verdict.reason is ReasonCode.NOVICE_COOLDOWN_ACTIVE


def test_zero_mark_means_never_paired() -> None:
    assert not cooldown_active(0, 0, 3)
    assert cooldown_active(2, 1, 3)
    assert not cooldown_active(4, 1, 3)


def test_window_zero_disables_cooldown() -> None:
    advanced = player("A1", "Advanced", games=5, novice_mark=5)
    assert evaluate(advanced, [player("N1", "Novice")], "male", cooldown_window=0).eligible


def test_evaluate_does_not_mutate_inputs() -> None:
    occupants = [player("N1", "Novice")]
    advanced = player("A1", "Advanced")
    evaluate(advanced, occupants, "mixed")
    assert [p.id for p in occupants] == ["N1"]
    assert advanced.novice_history == set()


def test_blocking_counterparts_lists_conflicting_occupants() -> None:
    advanced = player("A1", "Advanced", novice_history={"N2"})
    occupants = [player("N1", "Novice"), player("N2", "Novice"), player("M1")]
    assert blocking_counterparts(advanced, occupants) == ["N2"]


def test_normalize_mode() -> None:
    assert normalize_mode("Mixed") == MODE_MIXED
    assert normalize_mode("FEMALE") is Gender.FEMALE
    with pytest.raises(FillValidationError):
        normalize_mode("doubles")
