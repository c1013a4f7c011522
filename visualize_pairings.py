#!/usr/bin/env python3
"""Charts for the queue state: who has played with whom, and why fills fell short."""
from __future__ import annotations

import argparse
import csv
import json
from collections import Counter
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
from matplotlib.lines import Line2D
import networkx as nx

from court_queue import QueueState
from eligibility import ReasonCode, cooldown_active
from queue_models import Participant, Skill

LAYOUT_CHOICES = ("spring", "bipartite")

STATUS_COLORS = {
    "cooling": "#de2d26",
    "clear": "#31a354",
}
SKILL_BORDERS = {
    Skill.ADVANCED: "#08519c",
    Skill.NOVICE: "#fd8d3c",
}


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Visualize Advanced/Novice pairing history")
    ap.add_argument("--state", type=Path, default=Path("queue_state.json"))
    ap.add_argument("--decision-log", type=Path, help="Decision log CSV for the reason chart")
    ap.add_argument("--config", type=Path, help="Optional JSON file with config overrides")
    ap.add_argument("--out-dir", type=Path, default=Path("pairing_graphs"))
    ap.add_argument("--out-prefix", default="pairings")
    ap.add_argument(
        "--layouts",
        nargs="+",
        default=list(LAYOUT_CHOICES),
        choices=LAYOUT_CHOICES,
        help="One or more layout names to render",
    )
    ap.add_argument("--dpi", type=int, default=150, help="Output DPI")
    return ap.parse_args(argv)


def cooldown_status(p: Participant, window: int) -> str:
    if p.skill is Skill.ADVANCED:
        mark = p.novice_cooldown_mark
    elif p.skill is Skill.NOVICE:
        mark = p.advanced_cooldown_mark
    else:
        return "clear"
    return "cooling" if cooldown_active(p.games_completed, mark, window) else "clear"


def build_pairing_graph(people: Iterable[Participant], window: int) -> nx.Graph:
    graph = nx.Graph()
    tiered = [p for p in people if p.skill in (Skill.ADVANCED, Skill.NOVICE)]
    for p in tiered:
        graph.add_node(
            p.id,
            label=p.name,
            skill=p.skill,
            status=cooldown_status(p, window),
            games=p.games_completed,
        )
    for p in tiered:
        partners = p.novice_history if p.skill is Skill.ADVANCED else p.advanced_history
        for other in partners:
            if other in graph:
                graph.add_edge(p.id, other)

    if not graph.nodes:
        raise RuntimeError("No Advanced or Novice players to visualize")
    return graph


def _layout_spring(graph: nx.Graph) -> Dict[str, Tuple[float, float]]:
    if len(graph.nodes) == 1:
        return {next(iter(graph.nodes)): (0.0, 0.0)}
    return nx.spring_layout(graph, seed=42)


def _layout_bipartite(graph: nx.Graph) -> Dict[str, Tuple[float, float]]:
    advanced = [n for n in graph.nodes if graph.nodes[n]["skill"] is Skill.ADVANCED]
    if not advanced or len(advanced) == len(graph.nodes):
        return _layout_spring(graph)
    return nx.bipartite_layout(graph, advanced)


LAYOUT_FNS = {
    "spring": _layout_spring,
    "bipartite": _layout_bipartite,
}


def _legend_handles() -> List[Line2D]:
    handles = [
        Line2D([0], [0], marker="o", linestyle="", markerfacecolor=color,
               markeredgecolor="#2f2f2f", label=f"cooldown {status}")
        for status, color in STATUS_COLORS.items()
    ]
    handles.extend(
        Line2D([0], [0], marker="o", linestyle="", markerfacecolor="#ffffff",
               markeredgecolor=color, markeredgewidth=1.5, label=skill.value)
        for skill, color in SKILL_BORDERS.items()
    )
    return handles


def draw_pairing_graph(
    graph: nx.Graph,
    out_dir: Path,
    out_prefix: str,
    *,
    layouts: List[str],
    dpi: int,
) -> List[Path]:
    out_dir.mkdir(parents=True, exist_ok=True)
    prefix = Path(out_prefix).stem or "pairings"
    generated: List[Path] = []
    for layout in layouts:
        positions = LAYOUT_FNS[layout](graph)
        out_path = out_dir / f"{prefix}_{layout}.png"
        fig, ax = plt.subplots(figsize=(11, 8))
        nx.draw_networkx_nodes(
            graph,
            positions,
            node_color=[STATUS_COLORS[graph.nodes[n]["status"]] for n in graph.nodes],
            edgecolors=[SKILL_BORDERS[graph.nodes[n]["skill"]] for n in graph.nodes],
            node_size=800,
            linewidths=2.0,
            alpha=0.9,
            ax=ax,
        )
        nx.draw_networkx_labels(
            graph,
            positions,
            labels={n: graph.nodes[n]["label"] for n in graph.nodes},
            font_size=8,
            ax=ax,
        )
        if graph.edges:
            nx.draw_networkx_edges(graph, positions, width=1.2, alpha=0.6, ax=ax, edge_color="#555555")
        ax.legend(handles=_legend_handles(), loc="upper right", fontsize=8)
        ax.set_title(f"Advanced/Novice pairings ({layout} layout)")
        ax.set_axis_off()
        fig.tight_layout()
        fig.savefig(out_path, dpi=dpi)
        plt.close(fig)
        generated.append(out_path)
    return generated


def count_reasons(decision_log: Path) -> Counter:
    """Rejection reasons per code; a short fill counts as POOL_EXHAUSTED."""
    codes = {code.value for code in ReasonCode}
    counts: Counter = Counter()
    with decision_log.open(newline="", encoding="utf-8") as f:
        for row in csv.DictReader(f):
            status = row.get("Status", "")
            if status == "Short":
                counts[ReasonCode.POOL_EXHAUSTED.value] += 1
            elif status == "Rejected":
                code = (row.get("Note") or "").split(" ", 1)[0]
                if code in codes:
                    counts[code] += 1
    return counts


def plot_reason_counts(counts: Counter, out_path: Path, *, dpi: int) -> Optional[Path]:
    if not counts:
        return None
    labels = [code for code, _ in counts.most_common()]
    values = [counts[code] for code in labels]
    fig, ax = plt.subplots(figsize=(10, 4))
    ax.bar(range(len(labels)), values, color="#6baed6", edgecolor="#1f1f1f")
    ax.set_xticks(range(len(labels)))
    ax.set_xticklabels(labels, rotation=30, ha="right", fontsize=8)
    ax.set_ylabel("Rejections")
    ax.set_title("Why candidates were passed over")
    out_path.parent.mkdir(parents=True, exist_ok=True)
    fig.tight_layout()
    fig.savefig(out_path, dpi=dpi)
    plt.close(fig)
    return out_path


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    overrides = json.loads(args.config.read_text(encoding="utf-8")) if args.config else {}
    state = QueueState.from_dict(json.loads(args.state.read_text(encoding="utf-8")), overrides)
    graph = build_pairing_graph(state.people.values(), state.config["COOLDOWN_WINDOW"])
    for path in draw_pairing_graph(graph, args.out_dir, args.out_prefix, layouts=args.layouts, dpi=args.dpi):
        print(f"Wrote graph to {path}")

    if args.decision_log:
        prefix = Path(args.out_prefix).stem or "pairings"
        chart = plot_reason_counts(
            count_reasons(args.decision_log),
            args.out_dir / f"{prefix}_reasons.png",
            dpi=args.dpi,
        )
        if chart is not None:
            print(f"Wrote analysis chart to {chart}")


if __name__ == "__main__":
    main()
