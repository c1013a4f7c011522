import pytest

from fill_ledger import KIND_BATCH, KIND_FILL, FillLedger, FillRecord
from queue_models import FillValidationError
from tests.utils import NOW


def test_commit_keeps_latest_record_per_kind() -> None:
    ledger = FillLedger()
    ledger.commit(KIND_FILL, {"S1": ["P1"]}, pool_positions={"P1": 0})
    ledger.commit(KIND_FILL, {"S2": ["P2"]}, pool_positions={"P2": 3})
    assert len(ledger) == 1
    record = ledger.undo(KIND_FILL)
    assert record.additions == {"S2": ["P2"]}
    assert ledger.undo(KIND_FILL) is None


def test_kinds_are_independent_unless_slots_overlap() -> None:
    ledger = FillLedger()
    ledger.commit(KIND_FILL, {"S1": ["P1"]})
    ledger.commit(KIND_BATCH, {"S2": ["P2"]}, created_slot_ids=["S3"])
    assert ledger.peek(KIND_FILL) is not None
    ledger.commit(KIND_BATCH, {"S1": ["P4"]})
    assert ledger.peek(KIND_FILL) is None


def test_discard_slot_and_participant() -> None:
    ledger = FillLedger()
    ledger.commit(KIND_BATCH, {"S1": ["P1"]}, created_slot_ids=["S4"])
    assert ledger.discard_slot("S4") == 1
    assert ledger.peek(KIND_BATCH) is None

    ledger.commit(KIND_FILL, {"S1": ["P1", "P2"]})
    assert ledger.discard_participant("P9") == 0
    assert ledger.discard_participant("P2") == 1
    assert len(ledger) == 0


def test_ledger_round_trips_through_dict() -> None:
    ledger = FillLedger()
    ledger.commit(KIND_BATCH, {"S1": ["P1", "P2"]}, ["S2"], {"P1": 0, "P2": 4}, NOW)
    again = FillLedger.from_dict(ledger.to_dict())
    record = again.peek(KIND_BATCH)
    assert record == FillRecord(KIND_BATCH, {"S1": ["P1", "P2"]}, ["S2"], {"P1": 0, "P2": 4}, NOW)
    assert again.peek(KIND_FILL) is None


def test_unknown_kind_rejected() -> None:
    ledger = FillLedger()
    with pytest.raises(FillValidationError):
        ledger.commit("swap", {})
    with pytest.raises(FillValidationError):
        FillLedger.from_dict({KIND_FILL: {"kind": KIND_BATCH, "additions": {}}})
