import pytest

from serialpha.mailbox import LatestMeasurement
from serialpha.session import Session
from serialpha.titration import TitrationEngine, coerce_increment, compute_derivative, round_fixed


def make_engine(fields=("pH", "temperature")):
    session = Session(fields=list(fields))
    mailbox = LatestMeasurement()
    return session, mailbox, TitrationEngine(session, mailbox)


def test_add_point_without_measurement_is_noop():
    session, _mailbox, engine = make_engine()
    assert engine.add_point(10) is None
    assert session.titration == []
    assert session.titration_count == 0


def test_first_point_volume_is_zero_regardless_of_increment():
    session, mailbox, engine = make_engine()
    mailbox.put({"pH": 4.0, "temperature": 25.0})
    row = engine.add_point(500)
    assert row["volume"] == 0
    assert row["read"] == 1
    assert row["pH"] == 4.0
    assert session.volume_sum == 0


@pytest.mark.parametrize(
    "increments",
    [
        [10, 10, 10],
        [0, 5, 0, 25],
        [-10, 3, "abc", "7", None, 2.9],
    ],
)
def test_volumes_are_cumulative_and_non_decreasing(increments):
    session, mailbox, engine = make_engine()
    mailbox.put({"pH": 7.0, "temperature": 25.0})
    engine.add_point(99)
    for inc in increments:
        engine.add_point(inc)
    volumes = [r["volume"] for r in session.titration]
    assert volumes[0] == 0
    assert all(b >= a for a, b in zip(volumes, volumes[1:]))
    assert volumes[-1] == sum(coerce_increment(i) for i in increments)
    assert [r["read"] for r in session.titration] == list(range(1, len(increments) + 2))


@pytest.mark.parametrize(
    "value,expected",
    [(5, 5), (-3, 0), ("12", 12), ("12.7", 12), ("8 uL", 8), ("abc", 0), ("", 0), (None, 0), (2.9, 2), (float("nan"), 0)],
)
def test_coerce_increment(value, expected):
    assert coerce_increment(value) == expected


def test_round_fixed_is_half_away_from_zero():
    assert round_fixed(0.125, 2) == 0.13
    assert round_fixed(-0.125, 2) == -0.13
    assert round_fixed(2.675, 2) == 2.67
    assert round_fixed(7.25, 1) == 7.3
    assert round_fixed(5.0, 1) == 5.0


def test_compute_derivative():
    rows = [
        {"volume": 0, "pH": 4.0},
        {"volume": 10, "pH": 4.5},
        {"volume": 20, "pH": 7.0},
    ]
    assert compute_derivative(rows, "pH") == [
        {"averageVolume": 5.0, "derivativeValue": 50.0},
        {"averageVolume": 15.0, "derivativeValue": 250.0},
    ]


def test_compute_derivative_skips_zero_delta_and_missing_values():
    rows = [
        {"volume": 0, "pH": 4.0},
        {"volume": 0, "pH": 4.2},
        {"volume": 5, "pH": None},
        {"volume": 15, "pH": 5.0},
        {"volume": 25, "pH": 6.0},
    ]
    assert compute_derivative(rows, "pH") == [{"averageVolume": 20.0, "derivativeValue": 100.0}]


def test_compute_derivative_needs_two_rows():
    assert compute_derivative([], "pH") == []
    assert compute_derivative([{"volume": 0, "pH": 7.0}], "pH") == []


def test_recompute_is_idempotent():
    session, mailbox, engine = make_engine()
    for ph, inc in [(3.1, 0), (3.4, 7), (4.9, 3), (8.8, 1), (10.2, 9)]:
        mailbox.put({"pH": ph, "temperature": 25.0})
        engine.add_point(inc)
    first = [dict(p) for p in session.derivative]
    second = engine.recompute_derivative()
    assert first == second
    assert engine.recompute_derivative() == second
    assert len(second) == 4


def test_derivative_follows_selected_field():
    session, mailbox, engine = make_engine()
    mailbox.put({"pH": 4.0, "temperature": 20.0})
    engine.add_point(0)
    mailbox.put({"pH": 4.0, "temperature": 21.0})
    engine.add_point(10)
    assert session.derivative == [{"averageVolume": 5.0, "derivativeValue": 0.0}]
    session.select_field("temperature")
    assert engine.recompute_derivative() == [{"averageVolume": 5.0, "derivativeValue": 100.0}]
