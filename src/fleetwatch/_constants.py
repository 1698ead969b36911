"""Internal constants shared across the library."""

USER_AGENT = "fleetwatch/1"
OVERPASS_URL = "https://overpass-api.de/api/interpreter"

# ------------------------------------------------------------------
# Units
# ------------------------------------------------------------------

MPH_PER_MPS = 2.237
MPH_PER_KMH = 0.621371
METERS_PER_MILE = 1609.344
EARTH_RADIUS_M = 6_371_000.0

# ------------------------------------------------------------------
# Rule defaults (used when a rule's conditions omit a threshold)
# ------------------------------------------------------------------

DEFAULT_SPEED_LIMIT_MPH = 35.0
DEFAULT_SPEED_TOLERANCE_MPH = 5.0
SPEEDING_MEDIUM_EXCESS_MPH = 10.0
SPEEDING_HIGH_EXCESS_MPH = 20.0

DEFAULT_HARSH_ACCELERATION_MPH_S = 8.0
DEFAULT_HARSH_BRAKING_MPH_S = -8.0

MOTION_THRESHOLD_MPH = 5.0
DEFAULT_IDLE_THRESHOLD_MIN = 15.0
DEFAULT_OFFLINE_THRESHOLD_MIN = 5.0

DEFAULT_FUEL_DROP_PERCENT = 20.0
DEFAULT_FUEL_WINDOW_MIN = 30.0

DEFAULT_MAINTENANCE_WARNING_MILES = 500.0
DEFAULT_MAINTENANCE_CRITICAL_MILES = 100.0

# ------------------------------------------------------------------
# State
# ------------------------------------------------------------------

DEFAULT_HISTORY_SIZE = 5
