"""Pure geometry: GPS/percent mapping, geofences and task progress."""

from pyfabrix.spatial.geometry import FACILITY_BOUNDS, gps_to_percent, haversine_distance, percent_to_gps
from pyfabrix.spatial.progress import compute_phase_progress, generate_task_id, task_destination, task_source
from pyfabrix.spatial.rooms import ROOMS, is_inside_room, resolve_room, room_at

__all__ = [
    "FACILITY_BOUNDS",
    "ROOMS",
    "compute_phase_progress",
    "generate_task_id",
    "gps_to_percent",
    "haversine_distance",
    "is_inside_room",
    "percent_to_gps",
    "resolve_room",
    "room_at",
    "task_destination",
    "task_source",
]
