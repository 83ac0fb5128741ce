# Geohash
GEOHASH_BASE32 = "0123456789bcdefghjkmnpqrstuvwxyz"
GEOHASH_LENGTH = 7           # ~150m cell
GEOHASH_PREFIX_LEN = 5       # listener range query, ~5km cell
GEOHASH_HIGH_SENTINEL = "\uf8ff"  # sorts after every base32 char

# Neighbor offsets in degrees (lat, lon): N, S, E, W, NE, NW, SE, SW.
# Fixed angular delta, not corrected for latitude.
NEIGHBOR_OFFSET_DEG = 0.1
NEIGHBOR_OFFSETS = (
    (NEIGHBOR_OFFSET_DEG, 0.0),
    (-NEIGHBOR_OFFSET_DEG, 0.0),
    (0.0, NEIGHBOR_OFFSET_DEG),
    (0.0, -NEIGHBOR_OFFSET_DEG),
    (NEIGHBOR_OFFSET_DEG, NEIGHBOR_OFFSET_DEG),
    (NEIGHBOR_OFFSET_DEG, -NEIGHBOR_OFFSET_DEG),
    (-NEIGHBOR_OFFSET_DEG, NEIGHBOR_OFFSET_DEG),
    (-NEIGHBOR_OFFSET_DEG, -NEIGHBOR_OFFSET_DEG),
)

# Distance
EARTH_RADIUS_M = 6371000.0
MAX_NEARBY_RESULTS = 20
DEFAULT_NEARBY_RADIUS_M = 100.0
USE_CASE_COUNT_RADIUS_M = 1000.0

# Remote collections
ISSUES_COLLECTION = "issues"
SURFACE_ANCHORS_COLLECTION = "surface_anchors"
AUTHORITY_ACTIONS_COLLECTION = "authority_actions"
SURFACE_ID_PREFIX = "surface_"

# Snapshot caps (most recent first)
ISSUES_LIMIT = 500
SURFACE_ANCHORS_LIMIT = 500
AUTHORITY_ACTIONS_LIMIT = 200

# Aggregation
RED_ZONE_MIN_REPORTS = 5
RED_ZONE_DECIMALS = 3        # ~110m
TOP_HOTSPOTS = 3
RECENT_ACTIONS_PER_CATEGORY = 5
SUCCESS_STORIES_MAX = 10
REACH_MULTIPLIER = 100
GENERAL_CATEGORY = "GENERAL"

# Local store
ANCHORS_FILE = "anchors.json"
PENDING_UPLOADS_FILE = "pending_uploads.json"
STORE_LIST_KEY = "anchors"

# Timeouts / intervals
HTTP_TIMEOUT_S = 25
POLL_INTERVAL_S = 15.0
STATS_INTERVAL_S = 60.0
WORKER_THREADS = 4

# Surface-anchored reports
DEFAULT_PLANE_TYPE = "VERTICAL"
PLANE_TYPE_NAMES = {
    "HORIZONTAL_UPWARD_FACING": "Floor/Table",
    "HORIZONTAL_DOWNWARD_FACING": "Ceiling",
    "VERTICAL": "Wall",
}
DEFAULT_SURFACE_NORMAL = (0.0, 0.0, 1.0)
ANONYMOUS_USER = "anonymous"
NEARBY_ISSUES_RADIUS_KM = 5
