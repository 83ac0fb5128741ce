import math
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar

from ..core.constants import ANONYMOUS_USER, DEFAULT_PLANE_TYPE, SURFACE_ID_PREFIX
from ..core.models import AnchorRecord, AuthorityAction, Severity, Status, SurfaceAnchor
from ..utils.log import log_line
from ..utils.time import now_ms

T = TypeVar("T")

# =========================
# FIELD COERCION
# Missing or wrong-typed fields map to the documented default, never raise.
# =========================

def as_str(value: Any, default: str = "") -> str:
    if isinstance(value, str):
        return value
    return default

def as_float(value: Any, default: float = 0.0) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    f = float(value)
    if math.isnan(f) or math.isinf(f):
        return default
    return f

def as_int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    f = float(value)
    if math.isnan(f) or math.isinf(f):
        return default
    return int(f)

def timestamp_ms(value: Any, default: int = 0) -> int:
    """
    Millisecond timestamp from whatever shape a backend returns:
    - int/float epoch millis
    - {"seconds": s, "nanoseconds": n} (also "_seconds"/"_nanoseconds")
    - ISO-8601 string
    """
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return as_int(value, default)
    if isinstance(value, dict):
        secs = value.get("seconds", value.get("_seconds"))
        nanos = value.get("nanoseconds", value.get("_nanoseconds", 0))
        if isinstance(secs, (int, float)) and not isinstance(secs, bool):
            return int(secs) * 1000 + as_int(nanos) // 1_000_000
        return default
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = f"{text[:-1]}+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return default
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return int(dt.timestamp() * 1000)
    return default

def _coordinates(doc: Dict[str, Any]) -> tuple:
    lat = doc.get("latitude")
    lon = doc.get("longitude")
    if isinstance(lat, bool) or isinstance(lon, bool) or not isinstance(lat, (int, float)) or not isinstance(lon, (int, float)):
        raise ValueError(f"missing or non-numeric coordinates: lat={lat!r} lon={lon!r}")
    lat, lon = float(lat), float(lon)
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
        raise ValueError(f"coordinates out of range: lat={lat} lon={lon}")
    return lat, lon

# =========================
# RECORD PARSERS
# =========================

def anchor_from_dict(doc: Dict[str, Any], doc_id: Optional[str] = None) -> AnchorRecord:
    """
    Parse an `issues` document (or a local cache entry) into an AnchorRecord.

    Only a non-object document or unusable coordinates raise ValueError;
    every other field falls back to its default.
    """
    if not isinstance(doc, dict):
        raise ValueError(f"document is not an object: {type(doc).__name__}")
    lat, lon = _coordinates(doc)
    rid = as_str(doc.get("id")) or (doc_id or "") or str(uuid.uuid4())
    return AnchorRecord(
        id=rid,
        latitude=lat,
        longitude=lon,
        altitude=as_float(doc.get("altitude")),
        geohash=as_str(doc.get("geohash")),
        message_text=as_str(doc.get("messageText")),
        category=as_str(doc.get("category"), "general") or "general",
        use_case=as_str(doc.get("useCase")),
        status=Status.parse(doc.get("status")),
        severity=Severity.parse(doc.get("severity")),
        location_name=as_str(doc.get("locationName")),
        upvotes=max(0, as_int(doc.get("upvotes"))),
        timestamp=timestamp_ms(doc.get("timestamp")),
        wall_anchor_id=as_str(doc.get("wallAnchorId")),
        cloud_anchor_id=as_str(doc.get("cloudAnchorId")),
    )

def surface_from_dict(doc: Dict[str, Any], doc_id: Optional[str] = None) -> SurfaceAnchor:
    """A `surface_anchors` document with its placement fields; the id stays unprefixed."""
    if not isinstance(doc, dict):
        raise ValueError(f"document is not an object: {type(doc).__name__}")
    lat, lon = _coordinates(doc)
    raw_id = (doc_id or "") or as_str(doc.get("id"))
    if not raw_id:
        raise ValueError("surface anchor without id")
    image_url = doc.get("imageUrl")
    return SurfaceAnchor(
        id=raw_id,
        latitude=lat,
        longitude=lon,
        geohash=as_str(doc.get("geohash")),
        message_text=as_str(doc.get("messageText")),
        category=as_str(doc.get("category"), "general") or "general",
        relative_offset_x=as_float(doc.get("relativeOffsetX")),
        relative_offset_y=as_float(doc.get("relativeOffsetY")),
        relative_offset_z=as_float(doc.get("relativeOffsetZ")),
        plane_type=as_str(doc.get("planeType"), DEFAULT_PLANE_TYPE) or DEFAULT_PLANE_TYPE,
        surface_normal_x=as_float(doc.get("surfaceNormalX")),
        surface_normal_y=as_float(doc.get("surfaceNormalY")),
        surface_normal_z=as_float(doc.get("surfaceNormalZ"), 1.0),
        timestamp=timestamp_ms(doc.get("timestamp"), now_ms()),
        user_id=as_str(doc.get("userId"), ANONYMOUS_USER) or ANONYMOUS_USER,
        image_url=image_url if isinstance(image_url, str) and image_url else None,
    )

def surface_to_record(doc: Dict[str, Any], doc_id: Optional[str] = None) -> AnchorRecord:
    """
    Normalize a `surface_anchors` document into the AnchorRecord shape.
    The id gets the "surface_" prefix so it never collides with an issue id.
    Placement fields (offsets, plane type, normal) are dropped here; see
    surface_from_dict for the full document.
    """
    if not isinstance(doc, dict):
        raise ValueError(f"document is not an object: {type(doc).__name__}")
    lat, lon = _coordinates(doc)
    raw_id = (doc_id or "") or as_str(doc.get("id"))
    if raw_id.startswith(SURFACE_ID_PREFIX):
        raw_id = raw_id[len(SURFACE_ID_PREFIX):]
    if not raw_id:
        raise ValueError("surface anchor without id")
    return AnchorRecord(
        id=SURFACE_ID_PREFIX + raw_id,
        latitude=lat,
        longitude=lon,
        geohash=as_str(doc.get("geohash")),
        message_text=as_str(doc.get("messageText")),
        category=as_str(doc.get("category"), "general") or "general",
        use_case=as_str(doc.get("useCase")),
        status=Status.parse(doc.get("status")),
        severity=Severity.parse(doc.get("severity")),
        location_name=as_str(doc.get("locationName")),
        upvotes=max(0, as_int(doc.get("upvotes"))),
        timestamp=timestamp_ms(doc.get("timestamp"), now_ms()),
    )

def action_from_dict(doc: Dict[str, Any], doc_id: Optional[str] = None) -> AuthorityAction:
    if not isinstance(doc, dict):
        raise ValueError(f"document is not an object: {type(doc).__name__}")
    return AuthorityAction(
        id=(doc_id or "") or as_str(doc.get("id")),
        issue_id=as_str(doc.get("issueId")),
        action_type=as_str(doc.get("actionType")),
        admin_email=as_str(doc.get("adminEmail")),
        admin_uid=as_str(doc.get("adminUid")),
        notes=as_str(doc.get("notes")),
        timestamp=timestamp_ms(doc.get("timestamp")),
    )

def parse_batch(docs: Iterable[Any], parser: Callable[..., T], source: str = "") -> List[T]:
    """
    Parse every document of a batch; a bad document is logged and skipped,
    the rest of the batch is still returned.
    Documents may carry their id as an "id" key.
    """
    out: List[T] = []
    skipped = 0
    for doc in docs or []:
        try:
            doc_id = doc.get("id") if isinstance(doc, dict) else None
            out.append(parser(doc, doc_id if isinstance(doc_id, str) else None))
        except (ValueError, TypeError, KeyError) as e:
            skipped += 1
            log_line(f"PARSE SKIP | source={source} | err={e}", "WARN")
    if skipped:
        log_line(f"PARSE | source={source} | ok={len(out)} skipped={skipped}", "WARN")
    return out
