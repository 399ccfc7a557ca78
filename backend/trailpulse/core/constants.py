"""Shared application constants.

Centralizes repeat values used across tracking, derivation and route
generation so we can document and adjust them in one place.
"""

# Mean Earth radius used by every great-circle computation (km)
EARTH_RADIUS_KM = 6371.0

ACTIVITY_TYPES = ("run", "jog", "walk", "cycling", "hiking", "other")
DEFAULT_ACTIVITY_TYPE = "run"

# Offset (degrees, both axes) used to synthesize a second route vertex when a
# session produced a single distinct point. Stored LineStrings need >= 2.
ROUTE_EPSILON_DEG = 0.0001

# Client distances in (0, KM_HEURISTIC_THRESHOLD) are assumed to be km.
KM_HEURISTIC_THRESHOLD = 100
MIN_DISTANCE_PLACEHOLDER = 0.001
MIN_DURATION_SECONDS = 1

# Profile fallbacks for calorie/step estimation
DEFAULT_WEIGHT_KG = 70
DEFAULT_HEIGHT_CM = 170
DEFAULT_AGE = 30

# Stride length as a fraction of height, per activity type
STRIDE_FRACTIONS = {
    "run": 0.45,
    "jog": 0.40,
    "walk": 0.415,
    "hiking": 0.40,
}
DEFAULT_STRIDE_FRACTION = 0.415

# Route generation: shape -> max target distance (km)
ROUTE_SHAPE_MAX_KM = {"short": 3.0, "long": 10.0, "loop": 8.0}
DEFAULT_ROUTE_TARGET_KM = 5.0

# Procedural fallback: shape -> number of generated points
FALLBACK_POINT_COUNTS = {"short": 5, "long": 10, "loop": 8}

# Elevation estimate = distance (km) * factor
FALLBACK_ELEVATION_FACTORS = {"short": 8, "long": 12, "loop": 10}
ROAD_ELEVATION_FACTOR = 10

# Duplicate detection when saving a completed route
DUPLICATE_ROUTE_RADIUS_M = 50
DUPLICATE_ROUTE_DISTANCE_TOLERANCE = 0.1

NEARBY_ROUTES_DEFAULT_KM = 5.0
NEARBY_ROUTES_LIMIT = 10
