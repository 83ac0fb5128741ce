#!/usr/bin/env python3
"""
Print dashboard statistics computed from local files (no network).

Reads the local anchor cache and, optionally, a JSON list of authority actions
(e.g. an export of the authority_actions collection), then runs the same
recompute the live aggregator uses.

Usage:
    python tools/impact_report.py --anchors data/anchors.json --actions actions.json
    python tools/impact_report.py --anchors data/anchors.json --json
"""
import argparse
import json
import sys
from pathlib import Path
from typing import List

# Add project root to path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from pc.adapters.local_store import DurableLocalStore
from pc.core.models import ImpactStats
from pc.domain.impact import compute_impact_stats
from pc.domain.normalize import action_from_dict, parse_batch
from pc.utils.time import iso_from_ms


def load_actions(path: Path) -> list:
    if not path.exists():
        raise SystemExit(f"File not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("actions", [])
    return parse_batch(data if isinstance(data, list) else [], action_from_dict, source=path.name)


def render(stats: ImpactStats) -> List[str]:
    lines = [
        f"Reports:      {stats.total_reports}",
        f"Fixed:        {stats.issues_fixed}",
        f"In progress:  {stats.issues_in_progress}",
        f"Red zones:    {stats.red_zones}",
        f"Reach (est.): {stats.estimated_reach}",
        "",
    ]
    for b in stats.category_breakdowns:
        lines.append(
            f"{b.icon} {b.display_name:<18} total={b.total:<4} fixed={b.fixed:<4} "
            f"pending={b.pending:<4} in_progress={b.in_progress:<4} rejected={b.rejected:<4} "
            f"rate={b.resolution_rate:.0%}"
        )
        if b.top_hotspots:
            lines.append(f"    hotspots: {', '.join(b.top_hotspots)}")
    if stats.success_stories:
        lines.append("")
        lines.append("Success stories:")
        for s in stats.success_stories:
            lines.append(f"  - {iso_from_ms(s.resolved_at)} [{s.category}] {s.title}: {s.description}")
    return lines


def main() -> int:
    parser = argparse.ArgumentParser(description="Dashboard stats from the local cache")
    parser.add_argument("--anchors", default="data/anchors.json")
    parser.add_argument("--actions", default=None, help="JSON list of authority actions")
    parser.add_argument("--json", action="store_true", help="print the stats as JSON")
    args = parser.parse_args()

    anchors_path = Path(args.anchors)
    store = DurableLocalStore(anchors_path.parent, anchors_file=anchors_path.name)
    issues = store.load_anchors()
    actions = load_actions(Path(args.actions)) if args.actions else []

    stats = compute_impact_stats(issues, [], actions)
    if args.json:
        print(json.dumps(stats.to_dict(), ensure_ascii=False, indent=2))
    else:
        print("\n".join(render(stats)))
    return 0


if __name__ == "__main__":
    sys.exit(main())
