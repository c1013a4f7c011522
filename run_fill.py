#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Drive the court queue from the command line.

The queue lives in a JSON state file (see ``QueueState.to_dict``). Each
subcommand loads it, applies one operation and writes it back (to ``--out``
when given). Fills print what was added and why others were passed over;
``--decision-log`` also writes every engine decision to CSV.
"""
from __future__ import annotations

import argparse
import json
from collections import Counter
from pathlib import Path
from typing import List, Optional

from court_queue import QueueState
from fill_engine import BatchResult, DecisionLogger, FillResult
from fill_ledger import FillRecord
from queue_models import Participant, parse_gender, parse_skill


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Fill court slots from the waiting pool")
    ap.add_argument("--state", type=Path, default=Path("queue_state.json"))
    ap.add_argument("--out", type=Path, help="Where to write the updated state (default: overwrite --state)")
    ap.add_argument("--config", type=Path, help="Optional JSON file with config overrides")
    ap.add_argument("--seed", type=int, help="Seed for the mixed/single-gender draw on empty slots")
    ap.add_argument("--decision-log", type=Path, help="Write engine decisions to this CSV")
    sub = ap.add_subparsers(dest="command", required=True)

    p = sub.add_parser("fill", help="Fill one slot")
    p.add_argument("--slot", required=True)
    sub.add_parser("fill-all", help="Fill every pending slot, opening new ones as needed")
    sub.add_parser("undo-fill", help="Undo the last single-slot fill")
    sub.add_parser("undo-batch", help="Undo the last fill-all")

    p = sub.add_parser("add-court", help="Register a court")
    p.add_argument("--court", required=True)
    p = sub.add_parser("promote", help="Start a slot's session on a court")
    p.add_argument("--slot", required=True)
    p.add_argument("--court", required=True)
    p = sub.add_parser("finish", help="End the session on a court")
    p.add_argument("--court", required=True)

    sub.add_parser("clear-idle", help="Reset the wait of everyone in the pool")
    p = sub.add_parser("new-slot", help="Open an empty slot")
    p.add_argument("--prefer", nargs="*", default=[], help="Preferred court ids")

    p = sub.add_parser("join", help="Add a player to the pool (or put a known player back)")
    p.add_argument("--id", required=True, dest="participant_id")
    p.add_argument("--name")
    p.add_argument("--gender")
    p.add_argument("--skill")
    return ap.parse_args(argv)


def load_state(path: Path, overrides: dict, logger: Optional[DecisionLogger]) -> QueueState:
    if path.exists():
        data = json.loads(path.read_text(encoding="utf-8"))
        return QueueState.from_dict(data, overrides, logger=logger)
    return QueueState(overrides, logger=logger)


def save_state(state: QueueState, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(state.to_dict(), indent=2), encoding="utf-8")


def _mode_text(mode) -> str:
    return getattr(mode, "value", mode)


def describe_fill(result: FillResult) -> List[str]:
    lines = [
        f"Slot {result.slot_id}: {result.outcome} "
        f"(mode {_mode_text(result.mode)}, {result.final_size} players)"
    ]
    if result.fallback_used:
        lines.append(f"  switched from {_mode_text(result.resolved_mode)} to mixed to finish")
    for p in result.added:
        lines.append(f"  + {p.id} {p.label()}")
    counts = Counter(code.value for code in result.reason_codes)
    for code, n in sorted(counts.items()):
        lines.append(f"  {code}: {n}")
    return lines


def describe_batch(result: BatchResult) -> List[str]:
    lines = [f"Batch: {result.total_added()} players placed in {result.rounds} rounds"]
    for sid, ids in result.added_ids.items():
        tag = " (new)" if sid in result.created_slot_ids else ""
        lines.append(f"  {sid}{tag}: {', '.join(ids)}")
    if result.ceiling_reached:
        lines.append("  round ceiling reached")
    if result.unassigned:
        lines.append(f"  still waiting: {', '.join(result.unassigned)}")
    return lines


def describe_undo(record: Optional[FillRecord], what: str) -> List[str]:
    if record is None:
        return [f"Nothing to undo ({what})"]
    lines = [f"Undid {what}"]
    for sid, ids in record.additions.items():
        lines.append(f"  {sid}: {', '.join(ids)} back to the pool")
    if record.created_slot_ids:
        lines.append(f"  removed slots: {', '.join(record.created_slot_ids)}")
    return lines


def run(args: argparse.Namespace, state: QueueState) -> List[str]:
    cmd = args.command
    if cmd == "fill":
        return describe_fill(state.fill_slot(args.slot))
    if cmd == "fill-all":
        return describe_batch(state.fill_all_slots())
    if cmd == "undo-fill":
        return describe_undo(state.undo_last_fill(), "last fill")
    if cmd == "undo-batch":
        return describe_undo(state.undo_last_batch(), "last batch")
    if cmd == "add-court":
        state.add_court(args.court)
        return [f"Court {args.court} added"]
    if cmd == "promote":
        ids = state.promote_slot(args.slot, args.court)
        return [f"Court {args.court}: {', '.join(ids)}"]
    if cmd == "finish":
        ids = state.finish_session(args.court)
        return [f"Court {args.court} free; back in the pool: {', '.join(ids)}"]
    if cmd == "clear-idle":
        return [f"Reset wait for {state.clear_idle_times()} players"]
    if cmd == "new-slot":
        slot = state.create_slot(args.prefer)
        return [f"Opened slot {slot.id}"]
    if cmd == "join":
        if args.participant_id in state.people:
            entered = state.enter_pool(args.participant_id)
            return [f"{args.participant_id} {'joined' if entered else 'already in'} the pool"]
        if not (args.gender and args.skill):
            raise ValueError("New players need --gender and --skill")
        p = state.add_participant(Participant(
            id=args.participant_id,
            name=args.name or args.participant_id,
            gender=parse_gender(args.gender),
            skill=parse_skill(args.skill),
            queue_entered_at=state.clock(),
        ))
        return [f"{p.id} joined the pool"]
    raise ValueError(f"Unknown command {cmd}")


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    overrides = json.loads(args.config.read_text(encoding="utf-8")) if args.config else {}
    if args.seed is not None:
        overrides["RANDOM_SEED"] = args.seed
    logger = DecisionLogger() if args.decision_log else None
    state = load_state(args.state, overrides, logger)

    for line in run(args, state):
        print(line)

    out = args.out or args.state
    save_state(state, out)
    print(f"Wrote {out}")
    if logger is not None:
        logger.write_csv(args.decision_log)
        print(f"Wrote {args.decision_log}")


if __name__ == "__main__":
    main()
