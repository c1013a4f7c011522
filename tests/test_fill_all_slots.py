import random

from fill_engine import DecisionLogger, build_config, fill_all_slots
from queue_models import SLOT_CAPACITY, Gender, Skill, is_valid_terminal_composition
from tests.utils import FORCE_MIXED, FORCE_SINGLE, ids, player, slot


def _random_pool(rng: random.Random, size: int):
    skills = list(Skill)
    return [
        player(
            f"P{i}",
            rng.choice(skills).value,
            rng.choice(["male", "female"]),
            wait=rng.randint(0, 120),
        )
        for i in range(size)
    ]


def test_two_slots_never_share_a_player() -> None:
    pool = [player(f"M{i}", wait=i) for i in range(1, 9)]
    slots = [slot("S1", sequence=1), slot("S2", sequence=2)]
    result = fill_all_slots(slots, pool, rng=FORCE_SINGLE)

    assert set(result.added_ids["S1"]) == {"M8", "M7", "M6", "M5"}
    assert set(result.added_ids["S2"]) == {"M4", "M3", "M2", "M1"}
    assert result.created_slot_ids == []
    assert result.unassigned == []
    assert result.rounds == 1


def test_slots_filled_in_sequence_order() -> None:
    pool = [player(f"M{i}", wait=i) for i in range(1, 5)]
    slots = [slot("late", sequence=5), slot("early", sequence=2)]
    result = fill_all_slots(slots, pool, rng=FORCE_SINGLE)
    assert set(result.added_ids["early"]) == {"M1", "M2", "M3", "M4"}
    assert "late" not in result.additions


def test_new_slots_opened_while_players_remain() -> None:
    pool = [player(f"M{i}", wait=i) for i in range(1, 7)]
    result = fill_all_slots([], pool, rng=FORCE_SINGLE)

    assert result.created_slot_ids == ["S1", "S2"]
    assert [s.sequence for s in result.created_slots] == [1, 2]
    assert len(result.additions["S1"]) == 4
    assert set(result.added_ids["S2"]) == {"M1", "M2"}
    assert result.unassigned == []


def test_created_slots_follow_existing_sequence_and_ids() -> None:
    seated = [player(f"F{i}", gender="female") for i in range(4)]
    slots = [slot("S1", seated, sequence=1)]
    pool = [player("M1", wait=5)]
    result = fill_all_slots(slots, pool, rng=FORCE_SINGLE, reserved_ids={"S2"}, start_sequence=2)

    assert result.created_slot_ids == ["S3"]
    assert result.created_slots[0].sequence == 2
    assert result.added_ids == {"S3": ["M1"]}


def test_existing_partial_slot_gets_topped_up_first() -> None:
    seated = [player("F1", gender="female"), player("F2", gender="female")]
    pool = [player("F3", gender="female", wait=30), player("F4", gender="female", wait=20), player("M1", wait=10)]
    result = fill_all_slots([slot("S1", seated)], pool, rng=FORCE_SINGLE)

    assert set(result.added_ids["S1"]) == {"F3", "F4"}
    assert result.added_ids[result.created_slot_ids[0]] == ["M1"]


def test_batch_is_staged_and_leaves_inputs_alone() -> None:
    pool = [player(f"M{i}", wait=i) for i in range(1, 6)]
    target = slot("S1")
    fill_all_slots([target], pool, rng=FORCE_SINGLE)
    assert target.occupants == []
    assert ids(pool) == ["M1", "M2", "M3", "M4", "M5"]


def test_round_ceiling_ends_pass_without_error() -> None:
    pool = [player(f"M{i}", wait=i) for i in range(1, 4)]
    cfg = build_config({"MAX_BATCH_ROUNDS": 1})
    result = fill_all_slots([], pool, rng=FORCE_SINGLE, config=cfg)

    assert result.ceiling_reached
    assert result.rounds == 1
    assert result.created_slots == []
    assert sorted(result.unassigned) == ["M1", "M2", "M3"]


def test_random_pools_terminate_with_valid_slots() -> None:
    rng = random.Random(11)
    for _ in range(20):
        pool = _random_pool(rng, rng.randint(0, 30))
        result = fill_all_slots([], pool, rng=rng)

        assert result.rounds <= build_config()["MAX_BATCH_ROUNDS"]
        placed = [pid for people in result.added_ids.values() for pid in people]
        assert len(placed) == len(set(placed))
        assert sorted(placed + result.unassigned) == sorted(ids(pool))
        for created in result.created_slots:
            assert 0 < len(created.occupants) <= SLOT_CAPACITY
            if created.is_complete:
                assert is_valid_terminal_composition(created.occupants)
            if any(p.is_expert for p in created.occupants):
                assert all(p.is_expert for p in created.occupants)


def test_mixed_batch_balances_genders() -> None:
    pool = [
        player("M1", wait=60),
        player("M2", wait=50),
        player("M3", wait=40),
        player("F1", gender="female", wait=30),
        player("F2", gender="female", wait=20),
    ]
    result = fill_all_slots([slot("S1")], pool, rng=FORCE_MIXED)
    first = result.additions["S1"]
    counts = {g: sum(1 for p in first if p.gender is g) for g in Gender}
    assert counts == {Gender.MALE: 2, Gender.FEMALE: 2}
    assert result.added_ids[result.created_slot_ids[0]] == ["M3"]


def test_batch_logs_slot_creation() -> None:
    logger = DecisionLogger()
    fill_all_slots([], [player("M1")], rng=FORCE_SINGLE, logger=logger)
    created = [row for row in logger.rows if row["Status"] == "Created slot"]
    assert [row["SlotId"] for row in created] == ["S1"]
