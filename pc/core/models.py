import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional, Dict, Any, Tuple

from ..utils.time import now_ms
from .constants import ANONYMOUS_USER, DEFAULT_PLANE_TYPE, PLANE_TYPE_NAMES

class Status(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    REJECTED = "REJECTED"

    @classmethod
    def parse(cls, value: Any) -> "Status":
        """Upper-cased lookup; empty or unknown values fall back to PENDING."""
        if isinstance(value, cls):
            return value
        key = str(value or "").strip().upper()
        try:
            return cls(key)
        except ValueError:
            return cls.PENDING

class Severity(str, Enum):
    URGENT = "URGENT"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def priority(self) -> int:
        # 1 = most urgent
        return _SEVERITY_PRIORITY[self]

    @classmethod
    def parse(cls, value: Any) -> "Severity":
        if isinstance(value, cls):
            return value
        key = str(value or "").strip().upper()
        try:
            return cls(key)
        except ValueError:
            return cls.MEDIUM

_SEVERITY_PRIORITY = {Severity.URGENT: 1, Severity.HIGH: 2, Severity.MEDIUM: 3, Severity.LOW: 4}

class UseCase(str, Enum):
    WOMENS_SAFETY = "WOMENS_SAFETY"
    ACCESSIBILITY = "ACCESSIBILITY"
    LABOR_RIGHTS = "LABOR_RIGHTS"
    FACILITIES = "FACILITIES"
    ENVIRONMENTAL = "ENVIRONMENTAL"
    CIVIL_RESISTANCE = "CIVIL_RESISTANCE"

    @classmethod
    def from_string(cls, value: Any) -> Optional["UseCase"]:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "").strip().upper())
        except ValueError:
            return None

class SortOption(str, Enum):
    RECENT = "RECENT"
    POPULAR = "POPULAR"
    URGENT = "URGENT"
    NEAREST = "NEAREST"

@dataclass
class AnchorRecord:
    latitude: float
    longitude: float
    message_text: str = ""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    altitude: float = 0.0
    geohash: str = ""            # derived; recomputed before every write
    category: str = "general"    # free-form legacy tag
    use_case: str = ""           # UseCase name or empty
    status: Status = Status.PENDING
    severity: Severity = Severity.MEDIUM
    location_name: str = ""
    upvotes: int = 0
    timestamp: int = field(default_factory=now_ms)
    wall_anchor_id: str = ""
    cloud_anchor_id: str = ""

    def with_geohash(self) -> "AnchorRecord":
        from ..domain.geohash import encode
        return replace(self, geohash=encode(self.latitude, self.longitude))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "altitude": self.altitude,
            "geohash": self.geohash,
            "messageText": self.message_text,
            "category": self.category,
            "useCase": self.use_case,
            "status": Status.parse(self.status).value,
            "severity": Severity.parse(self.severity).value,
            "locationName": self.location_name,
            "upvotes": self.upvotes,
            "timestamp": self.timestamp,
            "wallAnchorId": self.wall_anchor_id,
            "cloudAnchorId": self.cloud_anchor_id,
        }

@dataclass(frozen=True)
class SurfaceAnchor:
    """
    A report pinned to a detected surface. The offset (metres from the GPS fix)
    and the surface normal are stored as given; turning them into a pose is the
    renderer's job.
    """
    latitude: float
    longitude: float
    message_text: str = ""
    category: str = "general"
    id: str = ""                 # assigned by the backend on add
    geohash: str = ""
    relative_offset_x: float = 0.0
    relative_offset_y: float = 0.0
    relative_offset_z: float = 0.0
    plane_type: str = DEFAULT_PLANE_TYPE
    surface_normal_x: float = 0.0
    surface_normal_y: float = 0.0
    surface_normal_z: float = 1.0
    timestamp: int = field(default_factory=now_ms)
    user_id: str = ANONYMOUS_USER
    image_url: Optional[str] = None

    @property
    def offset(self) -> Tuple[float, float, float]:
        return (self.relative_offset_x, self.relative_offset_y, self.relative_offset_z)

    @property
    def surface_normal(self) -> Tuple[float, float, float]:
        return (self.surface_normal_x, self.surface_normal_y, self.surface_normal_z)

    @property
    def plane_display_name(self) -> str:
        return PLANE_TYPE_NAMES.get(self.plane_type, "Surface")

    def with_geohash(self) -> "SurfaceAnchor":
        from ..domain.geohash import encode
        return replace(self, geohash=encode(self.latitude, self.longitude))

    def to_dict(self) -> Dict[str, Any]:
        """Document body for `surface_anchors` (the id lives outside the body)."""
        return {
            "messageText": self.message_text,
            "category": self.category,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "geohash": self.geohash,
            "relativeOffsetX": self.relative_offset_x,
            "relativeOffsetY": self.relative_offset_y,
            "relativeOffsetZ": self.relative_offset_z,
            "planeType": self.plane_type,
            "surfaceNormalX": self.surface_normal_x,
            "surfaceNormalY": self.surface_normal_y,
            "surfaceNormalZ": self.surface_normal_z,
            "timestamp": self.timestamp,
            "userId": self.user_id,
            "imageUrl": self.image_url,
        }

@dataclass(frozen=True)
class AuthorityAction:
    id: str = ""
    issue_id: str = ""
    action_type: str = ""        # compared case-insensitively
    admin_email: str = ""
    admin_uid: str = ""
    notes: str = ""
    timestamp: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "issueId": self.issue_id,
            "actionType": self.action_type,
            "adminEmail": self.admin_email,
            "adminUid": self.admin_uid,
            "notes": self.notes,
            "timestamp": self.timestamp,
        }

@dataclass(frozen=True)
class CategoryBreakdown:
    category: str
    display_name: str = ""
    icon: str = ""
    total: int = 0
    fixed: int = 0
    pending: int = 0
    in_progress: int = 0
    rejected: int = 0
    resolution_rate: float = 0.0
    top_hotspots: List[str] = field(default_factory=list)
    recent_actions: List[AuthorityAction] = field(default_factory=list)

@dataclass(frozen=True)
class SuccessStory:
    title: str = ""
    description: str = ""
    category: str = ""
    resolved_at: int = 0

@dataclass(frozen=True)
class ImpactStats:
    total_reports: int = 0
    issues_fixed: int = 0
    issues_in_progress: int = 0
    red_zones: int = 0
    estimated_reach: int = 0
    category_breakdowns: List[CategoryBreakdown] = field(default_factory=list)
    success_stories: List[SuccessStory] = field(default_factory=list)
    all_actions: List[AuthorityAction] = field(default_factory=list)
    last_synced_ms: int = field(default_factory=now_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalReports": self.total_reports,
            "issuesFixed": self.issues_fixed,
            "issuesInProgress": self.issues_in_progress,
            "redZones": self.red_zones,
            "estimatedReach": self.estimated_reach,
            "categoryBreakdowns": [
                {
                    "category": b.category,
                    "displayName": b.display_name,
                    "icon": b.icon,
                    "total": b.total,
                    "fixed": b.fixed,
                    "pending": b.pending,
                    "inProgress": b.in_progress,
                    "rejected": b.rejected,
                    "resolutionRate": b.resolution_rate,
                    "topHotspots": list(b.top_hotspots),
                    "recentActions": [a.to_dict() for a in b.recent_actions],
                }
                for b in self.category_breakdowns
            ],
            "successStories": [
                {"title": s.title, "description": s.description, "category": s.category, "resolvedAt": s.resolved_at}
                for s in self.success_stories
            ],
            "lastSyncedMs": self.last_synced_ms,
        }
