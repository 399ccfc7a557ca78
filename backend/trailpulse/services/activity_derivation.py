"""Turn the raw inputs of a session stop into Activity field values.

Everything here is a pure function of its arguments (the caller passes
`now`), so the same stop payload always yields the same Activity.
"""

from dataclasses import dataclass, field
from datetime import datetime
import math

from trailpulse.core.constants import (
    ACTIVITY_TYPES,
    DEFAULT_ACTIVITY_TYPE,
    DEFAULT_AGE,
    DEFAULT_HEIGHT_CM,
    DEFAULT_STRIDE_FRACTION,
    DEFAULT_WEIGHT_KG,
    KM_HEURISTIC_THRESHOLD,
    MIN_DISTANCE_PLACEHOLDER,
    MIN_DURATION_SECONDS,
    STRIDE_FRACTIONS,
)
from trailpulse.core.errors import InvalidInput
from trailpulse.core.geo import offset_coordinate


@dataclass
class AthleteProfile:
    weight: float | None = None  # kg
    height: float | None = None  # cm
    age: int | None = None

    @property
    def weight_kg(self) -> float:
        return self.weight or DEFAULT_WEIGHT_KG

    @property
    def height_cm(self) -> float:
        return self.height or DEFAULT_HEIGHT_CM

    @property
    def age_years(self) -> int:
        return self.age or DEFAULT_AGE


@dataclass
class SessionSnapshot:
    """The parts of the session being closed that derivation reads."""

    start_time: datetime
    location: list[float]  # [lng, lat]
    distance: float = 0.0
    duration: float = 0.0
    speed: float = 0.0
    elevation: float | None = None
    heart_rate: float | None = None
    activity_type: str | None = None


@dataclass
class StopInputs:
    final_location: list | None = None
    location_history: list[dict] | None = None
    total_distance: float | None = None
    total_duration: float | None = None
    title: str | None = None
    activity_type: str | None = None
    elevation_gain: float | None = None
    average_speed: float | None = None
    max_speed: float | None = None
    route: list | None = None
    simulated: bool = False


@dataclass
class DerivedActivity:
    type: str
    title: str
    start_time: datetime
    end_time: datetime
    duration_seconds: float
    distance_m: float
    elevation_gain: float
    average_speed: float
    max_speed: float
    average_pace: float
    calories: int
    steps: int
    simulated: bool
    route: dict
    location_history: list[dict] = field(default_factory=list)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_positive_number(value) -> bool:
    return _is_number(value) and math.isfinite(value) and value > 0


def check_finite(label: str, value):
    """Reject inf/nan (JSON `1e309` decodes to inf). None passes through."""
    if _is_number(value) and not math.isfinite(value):
        raise InvalidInput(f"Invalid {label}. Must be a finite number")
    return value


def check_coordinate(coord, label: str = "coordinates", order: str = "[longitude, latitude]") -> list[float]:
    """Shape check only: exactly two numbers. Returns a float copy."""
    if (
        not isinstance(coord, (list, tuple))
        or len(coord) != 2
        or not all(_is_number(c) and math.isfinite(c) for c in coord)
    ):
        raise InvalidInput(f"Invalid {label}. Format should be {order} as numbers")
    return [float(coord[0]), float(coord[1])]


def normalize_activity_type(*candidates: str | None) -> str:
    """First non-empty candidate, validated; defaults to 'run'."""
    for value in candidates:
        if value:
            if value not in ACTIVITY_TYPES:
                raise InvalidInput(
                    f"Invalid activity type '{value}'. Must be one of: {', '.join(ACTIVITY_TYPES)}"
                )
            return value
    return DEFAULT_ACTIVITY_TYPE


# --------- Route geometry repair --------- #

def dedupe_consecutive(coords: list[list[float]]) -> list[list[float]]:
    distinct: list[list[float]] = []
    for coord in coords:
        if not distinct or coord[0] != distinct[-1][0] or coord[1] != distinct[-1][1]:
            distinct.append(coord)
    return distinct


def repair_route(
    route: list | None,
    history_coords: list | None,
    last_location: list[float],
) -> list[list[float]]:
    """Pick a path source and make it a valid LineString.

    Order: client route (>= 2 points), then location history (>= 2 points),
    then `last_location` plus an epsilon-offset twin. Consecutive repeats are
    dropped; a path that collapses to one vertex gets the epsilon twin.
    """
    if route and len(route) >= 2:
        coords = [check_coordinate(c, "route coordinates") for c in route]
    elif history_coords and len(history_coords) >= 2:
        coords = [check_coordinate(c, "location history coordinates") for c in history_coords]
    else:
        anchor = check_coordinate(last_location, "location")
        coords = [anchor, offset_coordinate(anchor)]

    distinct = dedupe_consecutive(coords)
    if len(distinct) < 2:
        distinct.append(offset_coordinate(distinct[0]))
    return distinct


# --------- Distance / duration normalization --------- #

def normalize_distance(reported, session_distance: float | None) -> float:
    """Best-guess distance in meters.

    HEURISTIC, not ground truth: clients report totals in either km or
    meters with no unit tag, so any final value in (0, 100) is read as km
    and scaled by 1000. 99 -> 99000, 100 -> 100. A genuine sub-100 m
    activity is therefore stored 1000x too long.
    """
    if _is_positive_number(reported):
        distance = float(reported)
    elif _is_positive_number(session_distance):
        distance = float(session_distance)
    else:
        distance = MIN_DISTANCE_PLACEHOLDER

    if 0 < distance < KM_HEURISTIC_THRESHOLD:
        distance = distance * 1000
    return distance


def normalize_duration(reported, session_duration: float | None) -> float:
    if _is_positive_number(reported):
        return float(reported)
    if _is_positive_number(session_duration):
        return float(session_duration)
    return float(MIN_DURATION_SECONDS)


# --------- Energy / steps --------- #

def harris_benedict_bmr(profile: AthleteProfile) -> float:
    """Resting kcal/day (male Harris-Benedict; the profile carries no sex)."""
    return (
        88.362
        + 13.397 * profile.weight_kg
        + 4.799 * profile.height_cm
        - 5.677 * profile.age_years
    )


def met_value(activity_type: str, speed_kmh: float, age: int) -> float:
    if activity_type == "run":
        if speed_kmh < 8:
            met = 6
        elif speed_kmh < 11:
            met = 9
        elif speed_kmh < 14:
            met = 12
        else:
            met = 14
    elif activity_type == "jog":
        met = 7
    elif activity_type == "walk":
        if speed_kmh < 4:
            met = 3
        elif speed_kmh < 6:
            met = 4
        else:
            met = 5
    elif activity_type == "cycling":
        if speed_kmh < 16:
            met = 5
        elif speed_kmh < 22:
            met = 7
        else:
            met = 10
    elif activity_type == "hiking":
        met = 6
    else:
        met = 5

    if age > 65:
        met *= 0.9
    elif age > 50:
        met *= 0.95
    return met


def estimate_calories(
    duration_seconds: float,
    distance_m: float,
    activity_type: str,
    profile: AthleteProfile,
) -> int:
    """MET x weight (kg) x duration (h), rounded half-up."""
    hours = duration_seconds / 3600
    speed_kmh = (distance_m / 1000) / hours if hours > 0 else 0.0
    met = met_value(activity_type, speed_kmh, profile.age_years)
    return round_half_up(met * profile.weight_kg * hours)


def estimate_steps(distance_m: float, activity_type: str, profile: AthleteProfile) -> int:
    fraction = STRIDE_FRACTIONS.get(activity_type, DEFAULT_STRIDE_FRACTION)
    stride_m = profile.height_cm * fraction / 100
    return round_half_up(distance_m / stride_m)


# --------- Entry point --------- #

def _history_entry(sample: dict, now: datetime) -> dict:
    ts = sample.get("timestamp") or now
    return {
        "timestamp": ts.isoformat() if isinstance(ts, datetime) else ts,
        "coordinates": sample.get("coordinates"),
        "speed": sample.get("speed"),
        "elevation": sample.get("elevation"),
        "heart_rate": sample.get("heart_rate"),
    }


def derive_activity(
    inputs: StopInputs,
    session: SessionSnapshot,
    profile: AthleteProfile,
    now: datetime,
) -> DerivedActivity:
    for label in ("total_distance", "total_duration", "elevation_gain", "average_speed", "max_speed"):
        check_finite(label, getattr(inputs, label))

    last_location = (
        check_coordinate(inputs.final_location, "final location")
        if inputs.final_location is not None
        else session.location
    )

    if inputs.location_history:
        history = [_history_entry(s, now) for s in inputs.location_history]
    else:
        history = [
            _history_entry(
                {
                    "timestamp": now,
                    "coordinates": last_location,
                    "speed": session.speed,
                    "elevation": session.elevation,
                    "heart_rate": session.heart_rate,
                },
                now,
            )
        ]

    route = repair_route(
        inputs.route,
        [h["coordinates"] for h in history],
        last_location,
    )

    activity_type = normalize_activity_type(inputs.activity_type, session.activity_type)
    distance = normalize_distance(inputs.total_distance, session.distance)
    duration = normalize_duration(inputs.total_duration, session.duration)

    if _is_positive_number(inputs.average_speed):
        average_speed = float(inputs.average_speed)
    else:
        average_speed = distance / (duration / 3600)

    return DerivedActivity(
        type=activity_type,
        title=inputs.title or f"Activity on {now.date().isoformat()}",
        start_time=session.start_time,
        end_time=now,
        duration_seconds=duration,
        distance_m=distance,
        elevation_gain=float(inputs.elevation_gain or 0),
        average_speed=average_speed,
        max_speed=float(inputs.max_speed or session.speed or 0),
        average_pace=duration / (distance / 1000),
        calories=estimate_calories(duration, distance, activity_type, profile),
        steps=estimate_steps(distance, activity_type, profile),
        simulated=inputs.simulated is True,
        route={"type": "LineString", "coordinates": route},
        location_history=history,
    )
