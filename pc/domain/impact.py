from collections import Counter
from typing import Dict, List, Optional, Sequence

from ..core.constants import (
    GENERAL_CATEGORY, RECENT_ACTIONS_PER_CATEGORY, REACH_MULTIPLIER,
    RED_ZONE_MIN_REPORTS, SUCCESS_STORIES_MAX, SURFACE_ID_PREFIX, TOP_HOTSPOTS,
)
from ..core.models import (
    AnchorRecord, AuthorityAction, CategoryBreakdown, ImpactStats, Status, SuccessStory,
)
from ..utils.time import now_ms
from .categories import CategoryRegistry, DEFAULT_REGISTRY
from .geo import zone_key

STORY_TITLE_MAX = 60

def count_red_zones(reports: Sequence[AnchorRecord]) -> int:
    """Number of ~110m cells (coordinates rounded to 3 decimals) holding 5+ reports."""
    zones = Counter(zone_key(r.latitude, r.longitude) for r in reports)
    return sum(1 for n in zones.values() if n >= RED_ZONE_MIN_REPORTS)

def top_hotspots(reports: Sequence[AnchorRecord], limit: int = TOP_HOTSPOTS) -> List[str]:
    names = Counter(r.location_name.strip() for r in reports if r.location_name and r.location_name.strip())
    return [f"{name} ({n})" for name, n in names.most_common(limit)]

def _newest_first(actions: Sequence[AuthorityAction]) -> List[AuthorityAction]:
    return sorted(actions, key=lambda a: a.timestamp, reverse=True)

def _shorten(text: str, limit: int = STORY_TITLE_MAX) -> str:
    text = " ".join(str(text or "").split())
    if len(text) <= limit:
        return text
    return text[: limit - 1].rstrip() + "…"

def _breakdown(
    key: str,
    group: List[AnchorRecord],
    actions: List[AuthorityAction],
    registry: CategoryRegistry,
) -> CategoryBreakdown:
    counts = Counter(Status.parse(r.status) for r in group)
    total = len(group)
    fixed = counts[Status.RESOLVED]
    ids = {r.id for r in group}
    name, icon = registry.display(key)
    return CategoryBreakdown(
        category=key,
        display_name=name,
        icon=icon,
        total=total,
        fixed=fixed,
        pending=counts[Status.PENDING],
        in_progress=counts[Status.IN_PROGRESS],
        rejected=counts[Status.REJECTED],
        resolution_rate=(fixed / total) if total else 0.0,
        top_hotspots=top_hotspots(group),
        recent_actions=[a for a in actions if a.issue_id in ids][:RECENT_ACTIONS_PER_CATEGORY],
    )

def _success_story(action: AuthorityAction, by_id: Dict[str, AnchorRecord], registry: CategoryRegistry) -> SuccessStory:
    report = by_id.get(action.issue_id) or by_id.get(SURFACE_ID_PREFIX + action.issue_id)
    if report is None:
        # Source report not in the snapshot: still show the resolution
        return SuccessStory(
            title="Issue resolved",
            description=action.notes.strip() or "A reported issue was marked resolved by an authority.",
            category=GENERAL_CATEGORY,
            resolved_at=action.timestamp,
        )

    key = registry.resolve(report.use_case, report.category)
    name, _ = registry.display(key)
    if action.notes.strip():
        description = action.notes.strip()
    elif report.location_name:
        description = f"Resolved near {report.location_name}"
    else:
        description = f"{name} report resolved by authorities"
    return SuccessStory(
        title=_shorten(report.message_text) or f"{name} report",
        description=description,
        category=key,
        resolved_at=action.timestamp,
    )

def compute_impact_stats(
    issues: Sequence[AnchorRecord],
    surface_reports: Sequence[AnchorRecord],
    actions: Sequence[AuthorityAction],
    now: Optional[int] = None,
    registry: CategoryRegistry = DEFAULT_REGISTRY,
) -> ImpactStats:
    """
    Full dashboard recompute from three snapshots. Pure: no I/O, no shared state.

    1. issues + surface reports form one report set
    2. status counts (RESOLVED = fixed, IN_PROGRESS = in progress; unknown = PENDING)
    3. red zones (5+ reports in one rounded cell)
    4-5. per-category breakdowns, largest group first
    6. success stories from the 10 newest RESOLVED actions
    7. estimated reach = reports x 100
    """
    reports: List[AnchorRecord] = list(issues) + list(surface_reports)
    recent_actions = _newest_first(list(actions))

    statuses = Counter(Status.parse(r.status) for r in reports)

    groups: Dict[str, List[AnchorRecord]] = {}
    for r in reports:
        groups.setdefault(registry.resolve(r.use_case, r.category), []).append(r)

    breakdowns = [_breakdown(k, g, recent_actions, registry) for k, g in groups.items()]
    breakdowns.sort(key=lambda b: (-b.total, b.category))

    by_id: Dict[str, AnchorRecord] = {}
    for r in reports:
        by_id.setdefault(r.id, r)
    resolved = [a for a in recent_actions if a.action_type.strip().upper() == Status.RESOLVED.value]
    stories = [_success_story(a, by_id, registry) for a in resolved[:SUCCESS_STORIES_MAX]]

    return ImpactStats(
        total_reports=len(reports),
        issues_fixed=statuses[Status.RESOLVED],
        issues_in_progress=statuses[Status.IN_PROGRESS],
        red_zones=count_red_zones(reports),
        estimated_reach=len(reports) * REACH_MULTIPLIER,
        category_breakdowns=breakdowns,
        success_stories=stories,
        all_actions=recent_actions,
        last_synced_ms=now if now is not None else now_ms(),
    )
