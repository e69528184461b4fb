"""Analytics pipelines and geospatial query validation."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List

import pytest

from backend.tourbook.errors import ValidationError
from backend.tourbook.services.tours import analytics


def test_parse_latlng() -> None:
    assert analytics.parse_latlng("34.111745,-118.113491") == (34.111745, -118.113491)
    for bad in ("34.1", "a,b", "95,10", "10,200", ""):
        with pytest.raises(ValidationError):
            analytics.parse_latlng(bad)


def test_parse_unit_and_distance() -> None:
    assert analytics.parse_unit("mi") == "mi"
    assert analytics.parse_unit("km") == "km"
    with pytest.raises(ValidationError, match="Unit must be either 'mi' or 'km'."):
        analytics.parse_unit("ft")
    assert analytics.parse_distance("250") == 250.0
    for bad in ("0", "-3", "far"):
        with pytest.raises(ValidationError):
            analytics.parse_distance(bad)


def test_within_filter_uses_radians() -> None:
    query = analytics.within_filter(3963.2, 34.0, -118.0, "mi")
    sphere = query["startLocation"]["$geoWithin"]["$centerSphere"]
    assert sphere[0] == [-118.0, 34.0]
    assert sphere[1] == pytest.approx(1.0)

    km = analytics.within_filter(637.81, 0.0, 0.0, "km")
    assert km["startLocation"]["$geoWithin"]["$centerSphere"][1] == pytest.approx(0.1)


def test_distances_pipeline_starts_with_geo_near() -> None:
    pipeline = analytics.distances_pipeline(34.0, -118.0, "km")
    geo = pipeline[0]["$geoNear"]
    assert geo["near"] == {"type": "Point", "coordinates": [-118.0, 34.0]}
    assert geo["distanceMultiplier"] == 0.001
    assert geo["query"] == {"secretTour": {"$ne": True}}
    assert pipeline[1] == {"$project": {"distance": 1, "name": 1}}
    assert analytics.distances_pipeline(0, 0, "mi")[0]["$geoNear"]["distanceMultiplier"] == 0.000621371


def test_tour_stats_pipeline_groups_by_difficulty() -> None:
    match, group, sort = analytics.tour_stats_pipeline()
    assert match["$match"]["ratingsAverage"] == {"$gte": 4.5}
    assert match["$match"]["secretTour"] == {"$ne": True}
    assert group["$group"]["_id"] == {"$toUpper": "$difficulty"}
    assert sort == {"$sort": {"avgPrice": -1}}


def test_monthly_plan_pipeline_bounds_the_year() -> None:
    pipeline = analytics.monthly_plan_pipeline(2027)
    window = pipeline[2]["$match"]["startDates"]
    assert window["$gte"] == datetime(2027, 1, 1, tzinfo=timezone.utc)
    assert window["$lt"] == datetime(2028, 1, 1, tzinfo=timezone.utc)
    assert pipeline[-1] == {"$limit": 12}
    assert pipeline[-2] == {"$sort": {"numTourStarts": -1, "month": 1}}


@pytest.mark.parametrize(
    "url",
    [
        "/api/v1/tours/tours-within/200/center/34.1/unit/mi",
        "/api/v1/tours/tours-within/200/center/34.1,-118.1/unit/yd",
        "/api/v1/tours/tours-within/-5/center/34.1,-118.1/unit/mi",
        "/api/v1/tours/distances/abc,def/unit/km",
    ],
)
def test_geo_routes_reject_bad_input(client, url: str) -> None:
    resp = client.get(url)
    assert resp.status_code == 400
    assert resp.get_json()["status"] == "fail"


def test_tours_within_route(client, monkeypatch) -> None:
    captured: List[Dict[str, Any]] = []

    def fake_find_many(filter_dict=None, **kwargs):
        captured.append(filter_dict)
        return [{"_id": "t1", "name": "The Sea Explorer", "createdAt": datetime(2024, 1, 1), "__v": 0}]

    monkeypatch.setattr(analytics.tours_repo, "find_many", fake_find_many)
    resp = client.get("/api/v1/tours/tours-within/400/center/34.111745,-118.113491/unit/mi")

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["results"] == 1
    assert body["data"]["data"] == [{"_id": "t1", "name": "The Sea Explorer"}]
    assert captured[0] == analytics.within_filter(400.0, 34.111745, -118.113491, "mi")


def test_distances_route(client, monkeypatch) -> None:
    monkeypatch.setattr(
        analytics.tours_repo,
        "aggregate",
        lambda pipeline: [{"_id": "t1", "name": "The Sea Explorer", "distance": 12.5}],
    )
    resp = client.get("/api/v1/tours/distances/34.111745,-118.113491/unit/km")
    assert resp.status_code == 200
    assert resp.get_json()["data"]["data"][0]["distance"] == 12.5
