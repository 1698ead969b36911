from __future__ import annotations

import pytest
from pydantic import ValidationError

from fleetwatch._geo import haversine_m, haversine_miles, point_in_circle, point_in_polygon
from fleetwatch.models.geofence import Geofence, GeofenceType

SQUARE = [(0.0, 0.0), (0.0, 1.0), (1.0, 1.0), (1.0, 0.0)]


def test_haversine_one_degree_of_latitude() -> None:
    assert haversine_m(0.0, 0.0, 1.0, 0.0) == pytest.approx(111_195, rel=1e-3)
    assert haversine_miles(0.0, 0.0, 1.0, 0.0) == pytest.approx(69.09, rel=1e-3)
    assert haversine_m(12.3, 45.6, 12.3, 45.6) == 0.0


def test_point_in_circle_boundary_is_inside() -> None:
    distance = haversine_m(0.0, 0.0, 0.001, 0.0)

    assert point_in_circle(0.001, 0.0, 0.0, 0.0, distance)
    assert not point_in_circle(0.001, 0.0, 0.0, 0.0, distance - 0.01)


def test_point_in_polygon_square() -> None:
    assert point_in_polygon(0.5, 0.5, SQUARE)
    assert not point_in_polygon(1.5, 0.5, SQUARE)
    assert not point_in_polygon(0.5, -0.1, SQUARE)


def test_point_in_polygon_closed_ring_matches_open_ring() -> None:
    closed = [*SQUARE, SQUARE[0]]

    for lat, lng in [(0.5, 0.5), (0.2, 0.9), (2.0, 2.0)]:
        assert point_in_polygon(lat, lng, closed) == point_in_polygon(lat, lng, SQUARE)


def test_point_in_polygon_concave_notch() -> None:
    # U shape: the notch between the arms is outside.
    u_shape = [(0, 0), (0, 3), (3, 3), (3, 2), (1, 2), (1, 1), (3, 1), (3, 0)]

    assert point_in_polygon(2.0, 0.5, u_shape)
    assert not point_in_polygon(2.0, 1.5, u_shape)
    assert point_in_polygon(2.0, 2.5, u_shape)


def test_degenerate_polygon_contains_nothing() -> None:
    assert not point_in_polygon(0.0, 0.0, [(0.0, 0.0), (1.0, 1.0)])


def test_geofence_accepts_stored_circular_row() -> None:
    fence = Geofence.model_validate(
        {
            "id": "g1",
            "organization_id": "org",
            "name": "Depot",
            "fence_type": "circular",
            "center_latitude": 40.0,
            "center_longitude": -74.0,
            "radius": 250,
        }
    )

    assert fence.type == GeofenceType.CIRCULAR
    assert fence.radius_m == 250.0
    assert fence.contains(40.0, -74.0)
    assert not fence.contains(40.01, -74.0)


def test_geofence_converts_geojson_polygon_to_lat_lng() -> None:
    fence = Geofence.model_validate(
        {
            "id": "g2",
            "organizationId": "org",
            "fenceType": "polygon",
            "polygon_coordinates": {
                "type": "Polygon",
                "coordinates": [[[10.0, 50.0], [11.0, 50.0], [11.0, 51.0], [10.0, 51.0], [10.0, 50.0]]],
            },
        }
    )

    assert fence.vertices[0] == (50.0, 10.0)
    assert fence.contains(50.5, 10.5)
    assert not fence.contains(10.5, 50.5)


def test_geofence_geometry_is_validated() -> None:
    with pytest.raises(ValidationError):
        Geofence(id="g", organization_id="org", type="circular")
    with pytest.raises(ValidationError):
        Geofence(id="g", organization_id="org", type="polygon", vertices=[(0, 0), (1, 1)])
