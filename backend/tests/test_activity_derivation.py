from datetime import datetime, timedelta

import pytest

from trailpulse.core.errors import InvalidInput
from trailpulse.services.activity_derivation import (
    AthleteProfile,
    SessionSnapshot,
    StopInputs,
    check_coordinate,
    derive_activity,
    estimate_calories,
    estimate_steps,
    harris_benedict_bmr,
    met_value,
    normalize_activity_type,
    normalize_distance,
    normalize_duration,
    repair_route,
)

NOW = datetime(2025, 3, 9, 8, 30, 0)
START = NOW - timedelta(minutes=30)


def snapshot(**overrides):
    values = dict(start_time=START, location=[-0.1276, 51.5072], distance=0.0, duration=0.0, speed=3.2)
    values.update(overrides)
    return SessionSnapshot(**values)


# --------- distance / duration --------- #

def test_distance_under_100_is_read_as_km():
    assert normalize_distance(99, None) == 99000
    assert normalize_distance(5.2, None) == pytest.approx(5200)


def test_distance_of_100_or_more_is_meters():
    assert normalize_distance(100, None) == 100
    assert normalize_distance(4200, None) == 4200


def test_distance_falls_back_to_session_then_placeholder():
    assert normalize_distance(None, 2500.0) == 2500.0
    assert normalize_distance(0, 3.0) == 3000.0
    # 0.001 placeholder goes through the same km heuristic
    assert normalize_distance(None, 0) == pytest.approx(1.0)


def test_duration_fallbacks():
    assert normalize_duration(1800, 10) == 1800
    assert normalize_duration(None, 42.0) == 42.0
    assert normalize_duration(-5, 0) == 1


# --------- energy / steps --------- #

def test_calories_reference_run():
    profile = AthleteProfile(weight=70, height=170, age=30)
    assert estimate_calories(3600, 10000, "run", profile) == 630


def test_calories_use_profile_defaults():
    assert estimate_calories(3600, 10000, "run", AthleteProfile()) == 630


@pytest.mark.parametrize("age,expected", [(30, 9), (55, 9 * 0.95), (70, 9 * 0.9)])
def test_met_age_adjustment(age, expected):
    assert met_value("run", 10, age) == pytest.approx(expected)


def test_bmr_reference_profile():
    # 88.362 + 13.397*70 + 4.799*170 - 5.677*30
    assert harris_benedict_bmr(AthleteProfile(weight=70, height=170, age=30)) == pytest.approx(1671.672)


def test_steps_from_stride_fraction():
    profile = AthleteProfile(height=170)
    # stride 0.765 m
    assert estimate_steps(10000, "run", profile) == 13072
    # cycling uses the default 0.415 fraction
    assert estimate_steps(1000, "cycling", profile) == round(1000 / 0.7055)


# --------- geometry repair --------- #

def test_repair_prefers_client_route_and_dedupes():
    route = [[0, 0], [0, 0], [1, 1], [1, 1], [2, 2]]
    assert repair_route(route, None, [5, 5]) == [[0.0, 0.0], [1.0, 1.0], [2.0, 2.0]]


def test_repair_falls_back_to_history():
    history = [[3, 3], [4, 4]]
    assert repair_route([[9, 9]], history, [5, 5]) == [[3.0, 3.0], [4.0, 4.0]]


def test_repair_collapsed_path_gets_epsilon_twin():
    out = repair_route([[1, 1], [1, 1]], None, [5, 5])
    assert out[0] == [1.0, 1.0]
    assert out[1] == pytest.approx([1.0001, 1.0001])


def test_repair_rejects_bad_coordinates():
    with pytest.raises(InvalidInput):
        repair_route([[1, "a"], [2, 2]], None, [5, 5])


def test_check_coordinate_rejects_bools_and_wrong_length():
    with pytest.raises(InvalidInput):
        check_coordinate([True, 1.0])
    with pytest.raises(InvalidInput):
        check_coordinate([1.0, 2.0, 3.0])


def test_activity_type_validation():
    assert normalize_activity_type(None, "walk") == "walk"
    assert normalize_activity_type(None, None) == "run"
    with pytest.raises(InvalidInput):
        normalize_activity_type("skydiving")


# --------- full derivation --------- #

def test_empty_stop_still_yields_valid_activity():
    derived = derive_activity(StopInputs(), snapshot(), AthleteProfile(), NOW)

    coords = derived.route["coordinates"]
    assert len(coords) >= 2
    assert all(a != b for a, b in zip(coords, coords[1:]))
    assert derived.distance_m == pytest.approx(1.0)
    assert derived.duration_seconds == 1
    assert derived.type == "run"
    assert derived.title == "Activity on 2025-03-09"
    assert derived.start_time == START
    assert derived.end_time == NOW
    assert derived.max_speed == 3.2
    assert len(derived.location_history) == 1
    assert derived.location_history[0]["coordinates"] == [-0.1276, 51.5072]


def test_full_stop_payload():
    inputs = StopInputs(
        total_distance=10,
        total_duration=3600,
        title="Morning 10k",
        activity_type="run",
        elevation_gain=42,
        max_speed=4.5,
        route=[[-0.12, 51.50], [-0.11, 51.51], [-0.10, 51.52]],
        simulated=True,
    )
    derived = derive_activity(inputs, snapshot(), AthleteProfile(weight=70, height=170, age=30), NOW)

    assert derived.distance_m == 10000
    assert derived.average_pace == 360
    assert derived.average_speed == 10000
    assert derived.calories == 630
    assert derived.steps == 13072
    assert derived.elevation_gain == 42
    assert derived.max_speed == 4.5
    assert derived.simulated is True
    assert derived.title == "Morning 10k"


def test_history_timestamps_serialized():
    sample_time = NOW - timedelta(minutes=1)
    inputs = StopInputs(
        location_history=[
            {"timestamp": sample_time, "coordinates": [0, 0], "speed": 3.0},
            {"timestamp": None, "coordinates": [0.001, 0.001]},
        ]
    )
    derived = derive_activity(inputs, snapshot(), AthleteProfile(), NOW)
    assert derived.location_history[0]["timestamp"] == sample_time.isoformat()
    assert derived.location_history[1]["timestamp"] == NOW.isoformat()
    assert derived.route["coordinates"] == [[0.0, 0.0], [0.001, 0.001]]


@pytest.mark.parametrize("value", [float("inf"), float("-inf"), float("nan")])
def test_non_finite_values_rejected(value):
    with pytest.raises(InvalidInput):
        check_coordinate([value, 51.5])
    with pytest.raises(InvalidInput):
        derive_activity(StopInputs(total_distance=value), snapshot(), AthleteProfile(), NOW)
    with pytest.raises(InvalidInput):
        derive_activity(StopInputs(max_speed=value), snapshot(), AthleteProfile(), NOW)
