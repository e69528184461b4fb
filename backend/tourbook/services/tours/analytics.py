"""Tour analytics and geospatial queries.

Pipelines are built by pure functions so they can be inspected without a
database; the `tour_stats`, `monthly_plan`, `tours_within` and `distances`
entry points validate input, run the pipeline and return plain documents.
Secret tours are excluded from every pipeline.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Tuple

from backend.tourbook.errors import ValidationError
from backend.tourbook.repositories import tours_repo

logger = logging.getLogger(__name__)

EARTH_RADIUS = {'mi': 3963.2, 'km': 6378.1}
DISTANCE_MULTIPLIER = {'mi': 0.000621371, 'km': 0.001}

NOT_SECRET = {'secretTour': {'$ne': True}}

TOP_CHEAP_ALIAS = {
    'limit': '5',
    'sort': '-ratingsAverage,price',
    'fields': 'name,price,ratingsAverage,summary,difficulty',
}


def parse_latlng(latlng: str) -> Tuple[float, float]:
    """Parse `lat,lng` into floats, checking ranges."""
    parts = str(latlng or '').split(',')
    if len(parts) != 2:
        raise ValidationError("Please provide latitude and longitude in the format lat,lng.")
    try:
        lat, lng = float(parts[0]), float(parts[1])
    except ValueError:
        raise ValidationError("Please provide latitude and longitude in the format lat,lng.")
    if not (-90.0 <= lat <= 90.0) or not (-180.0 <= lng <= 180.0):
        raise ValidationError("Latitude must be within [-90, 90] and longitude within [-180, 180].")
    return lat, lng


def parse_unit(unit: str) -> str:
    if unit not in EARTH_RADIUS:
        raise ValidationError("Unit must be either 'mi' or 'km'.")
    return unit


def parse_distance(distance: Any) -> float:
    try:
        value = float(distance)
    except (TypeError, ValueError):
        raise ValidationError("Distance must be a positive number.")
    if value <= 0:
        raise ValidationError("Distance must be a positive number.")
    return value


def parse_year(year: Any) -> int:
    try:
        return int(str(year))
    except ValueError:
        raise ValidationError(f"Invalid year: {year}")


def tour_stats_pipeline() -> List[Dict[str, Any]]:
    return [
        {'$match': {'ratingsAverage': {'$gte': 4.5}, **NOT_SECRET}},
        {'$group': {
            '_id': {'$toUpper': '$difficulty'},
            'numTours': {'$sum': 1},
            'numRatings': {'$sum': '$ratingsQuantity'},
            'avgRating': {'$avg': '$ratingsAverage'},
            'avgPrice': {'$avg': '$price'},
            'minPrice': {'$min': '$price'},
            'maxPrice': {'$max': '$price'},
        }},
        {'$sort': {'avgPrice': -1}},
    ]


def monthly_plan_pipeline(year: int) -> List[Dict[str, Any]]:
    start = datetime(year, 1, 1, tzinfo=timezone.utc)
    end = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
    return [
        {'$match': NOT_SECRET},
        {'$unwind': '$startDates'},
        {'$match': {'startDates': {'$gte': start, '$lt': end}}},
        {'$group': {
            '_id': {'$month': '$startDates'},
            'numTourStarts': {'$sum': 1},
            'tours': {'$push': '$name'},
        }},
        {'$addFields': {'month': '$_id'}},
        {'$project': {'_id': 0}},
        {'$sort': {'numTourStarts': -1, 'month': 1}},
        {'$limit': 12},
    ]


def within_filter(distance: float, lat: float, lng: float, unit: str) -> Dict[str, Any]:
    radius = distance / EARTH_RADIUS[unit]
    return {'startLocation': {'$geoWithin': {'$centerSphere': [[lng, lat], radius]}}}


def distances_pipeline(lat: float, lng: float, unit: str) -> List[Dict[str, Any]]:
    # $geoNear must be the first stage, so the secret filter goes in its query
    return [
        {'$geoNear': {
            'near': {'type': 'Point', 'coordinates': [lng, lat]},
            'distanceField': 'distance',
            'distanceMultiplier': DISTANCE_MULTIPLIER[unit],
            'spherical': True,
            'key': 'startLocation',
            'query': NOT_SECRET,
        }},
        {'$project': {'distance': 1, 'name': 1}},
    ]


def tour_stats() -> List[Dict[str, Any]]:
    return tours_repo.aggregate(tour_stats_pipeline())


def monthly_plan(year: Any) -> List[Dict[str, Any]]:
    return tours_repo.aggregate(monthly_plan_pipeline(parse_year(year)))


def tours_within(distance: Any, latlng: str, unit: str) -> List[Dict[str, Any]]:
    unit = parse_unit(unit)
    lat, lng = parse_latlng(latlng)
    radius = parse_distance(distance)
    docs = tours_repo.find_many(within_filter(radius, lat, lng, unit), projection={'__v': 0})
    return [tours_repo.public(doc) for doc in docs]


def distances(latlng: str, unit: str) -> List[Dict[str, Any]]:
    unit = parse_unit(unit)
    lat, lng = parse_latlng(latlng)
    return tours_repo.aggregate(distances_pipeline(lat, lng, unit))
