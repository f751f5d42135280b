from __future__ import annotations

import pytest

from satellite_checks.models import Location, LocationResult, Status, Verdict


def test_status_total_order() -> None:
    assert Status.OK < Status.WARNING < Status.CRITICAL < Status.UNKNOWN
    assert max(Status) == Status.UNKNOWN
    assert sorted([Status.UNKNOWN, Status.OK, Status.CRITICAL]) == [Status.OK, Status.CRITICAL, Status.UNKNOWN]


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("OK", Status.OK),
        ("warning", Status.WARNING),
        (" Critical ", Status.CRITICAL),
        (2, Status.CRITICAL),
        (0, Status.OK),
        ("DEGRADED", Status.UNKNOWN),
        (7, Status.UNKNOWN),
        (None, Status.UNKNOWN),
        (True, Status.UNKNOWN),
        (Status.WARNING, Status.WARNING),
        ("2", Status.CRITICAL),
        (" 0 ", Status.OK),
        ("9", Status.UNKNOWN),
    ],
)
def test_status_parse(raw, expected: Status) -> None:
    assert Status.parse(raw) == expected


def test_result_from_payload_stamps_defaults() -> None:
    r = LocationResult.from_payload({"status": "WARNING", "message": "slow"}, hostname="sat1.example")
    assert r.hostname == "sat1.example"
    assert r.tags == []
    assert r.stats is None

    r = LocationResult.from_payload(
        {"status": "ok", "message": "fine", "hostname": "inner", "tags": "a,b", "stats": {"t": 1}},
        hostname="sat1.example",
    )
    assert r.status == Status.OK
    assert r.hostname == "inner"
    assert r.tags == ["a", "b"]
    assert r.stats == {"t": 1}


def test_result_from_missing_payload_is_unknown() -> None:
    r = LocationResult.from_payload(None, hostname="sat1.example")
    assert r.status == Status.UNKNOWN
    assert "sat1.example" in r.message


def test_verdict_to_dict_omits_empty_members() -> None:
    v = Verdict(status=Status.OK, message="fine")
    assert v.to_dict() == {"status": "OK", "message": "fine"}

    v = Verdict(
        status=Status.CRITICAL,
        message="down",
        result=[LocationResult.unknown("a.example", "a.example: timeout after 60s")],
    )
    assert v.to_dict()["result"][0]["status"] == "UNKNOWN"


def test_location_dict_round_trip() -> None:
    loc = Location(hostname="a.example", ipaddr="10.0.0.1", authkey="k", last=True)
    assert Location.from_dict(loc.to_dict()) == loc
    assert Location.from_dict({"hostname": "a.example"}) is None
    assert Location.from_dict("a.example") is None
