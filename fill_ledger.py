# -*- coding: utf-8 -*-
"""Commit/undo ledger for fills.

Holds at most one record per kind: the last single-slot fill and the last
batch. A record says which players went into which slot, which slots the
batch opened, and where each player sat in the pool, so an undo can put them
back in the same order. A new commit supersedes any older record that touches
one of its slots, whatever its kind.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from queue_models import FillValidationError, format_timestamp, parse_timestamp

KIND_FILL = "fill"
KIND_BATCH = "batch"
KINDS = (KIND_FILL, KIND_BATCH)


@dataclass
class FillRecord:
    kind: str
    additions: Dict[str, List[str]]
    created_slot_ids: List[str] = field(default_factory=list)
    # participant id -> index in the pool before the commit
    pool_positions: Dict[str, int] = field(default_factory=dict)
    timestamp: Optional[datetime] = None

    @property
    def slot_ids(self) -> List[str]:
        return list(self.additions)

    def participant_ids(self) -> List[str]:
        return [pid for ids in self.additions.values() for pid in ids]

    def touches(self, slot_id: str) -> bool:
        return slot_id in self.additions or slot_id in self.created_slot_ids

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "additions": {sid: list(ids) for sid, ids in self.additions.items()},
            "created_slot_ids": list(self.created_slot_ids),
            "pool_positions": dict(self.pool_positions),
            "timestamp": format_timestamp(self.timestamp),
        }

    @classmethod
    def from_dict(cls, d: dict) -> "FillRecord":
        kind = d.get("kind")
        if kind not in KINDS:
            raise FillValidationError(f"Unknown ledger record kind {kind!r}")
        ts = d.get("timestamp")
        return cls(
            kind=kind,
            additions={str(sid): [str(x) for x in ids] for sid, ids in (d.get("additions") or {}).items()},
            created_slot_ids=[str(x) for x in d.get("created_slot_ids") or []],
            pool_positions={str(k): int(v) for k, v in (d.get("pool_positions") or {}).items()},
            timestamp=parse_timestamp(ts) if ts else None,
        )


def _check_kind(kind: str) -> None:
    if kind not in KINDS:
        raise FillValidationError(f"Unknown ledger record kind {kind!r}")


class FillLedger:
    def __init__(self):
        self.records: Dict[str, Optional[FillRecord]] = {kind: None for kind in KINDS}

    def commit(
        self,
        kind: str,
        additions: Dict[str, List[str]],
        created_slot_ids: Iterable[str] = (),
        pool_positions: Optional[Dict[str, int]] = None,
        timestamp: Optional[datetime] = None,
    ) -> FillRecord:
        _check_kind(kind)
        record = FillRecord(
            kind=kind,
            additions={sid: list(ids) for sid, ids in additions.items()},
            created_slot_ids=list(created_slot_ids),
            pool_positions=dict(pool_positions or {}),
            timestamp=timestamp,
        )
        for sid in list(record.additions) + record.created_slot_ids:
            self.discard_slot(sid)
        self.records[kind] = record
        return record

    def peek(self, kind: str) -> Optional[FillRecord]:
        _check_kind(kind)
        return self.records[kind]

    def undo(self, kind: str) -> Optional[FillRecord]:
        _check_kind(kind)
        record = self.records[kind]
        self.records[kind] = None
        return record

    def discard_slot(self, slot_id: str) -> int:
        """Forget every record that touches ``slot_id``; returns how many went."""
        dropped = 0
        for kind, record in self.records.items():
            if record is not None and record.touches(slot_id):
                self.records[kind] = None
                dropped += 1
        return dropped

    def discard_participant(self, participant_id: str) -> int:
        dropped = 0
        for kind, record in self.records.items():
            if record is not None and participant_id in record.participant_ids():
                self.records[kind] = None
                dropped += 1
        return dropped

    def __len__(self) -> int:
        return sum(1 for r in self.records.values() if r is not None)

    def to_dict(self) -> dict:
        return {kind: (r.to_dict() if r is not None else None) for kind, r in self.records.items()}

    @classmethod
    def from_dict(cls, d: Optional[dict]) -> "FillLedger":
        ledger = cls()
        for kind in KINDS:
            raw = (d or {}).get(kind)
            if not raw:
                continue
            record = FillRecord.from_dict(raw)
            if record.kind != kind:
                raise FillValidationError(f"Ledger record of kind {record.kind} stored under {kind}")
            ledger.records[kind] = record
        return ledger
