"""Internal constants shared across the library."""

from datetime import timedelta

# ------------------------------------------------------------------
# Reconciliation
# ------------------------------------------------------------------

#: A record is "live" when its last update is younger than this.
LIVENESS_WINDOW = timedelta(milliseconds=3000)

#: Identical alert messages inside this window are suppressed.
ALERT_DEDUP_WINDOW = timedelta(seconds=30)

MAX_ALERTS = 50
MAX_UNPARSED_RECORDS = 100

# ------------------------------------------------------------------
# Transport
# ------------------------------------------------------------------

CONNECT_TIMEOUT_S = 15.0
RECONNECT_DELAY_S = 5.0
KEEPALIVE_S = 10
CHANNEL_CAPACITY = 256

STREAM_PREFIX = "stream"
STATE_PREFIX = "state"

# ------------------------------------------------------------------
# Geometry
# ------------------------------------------------------------------

EARTH_RADIUS_M = 6_371_000.0

#: Substituted when a task leg is unknown or shorter than ``MIN_LEG_DISTANCE_M``.
FALLBACK_LEG_DISTANCE_M = 300.0
MIN_LEG_DISTANCE_M = 5.0

#: Arrival radius around an explicit waypoint that does not name a known room.
WAYPOINT_RADIUS_M = 3.0
