"""Geofence model."""

from __future__ import annotations

import enum
from typing import Any

from pydantic import AliasChoices, Field, model_validator

from fleetwatch._geo import point_in_circle, point_in_polygon
from fleetwatch.models._base import FleetBaseModel
from fleetwatch.models.telemetry import Location


class GeofenceType(enum.StrEnum):
    CIRCULAR = "circular"
    POLYGON = "polygon"


def _geojson_ring_to_vertices(polygon: Any) -> list[tuple[float, float]] | None:
    """Convert a GeoJSON polygon (``[lng, lat]`` pairs) to ``(lat, lng)`` vertices.

    Only the outer ring is used.
    """
    coordinates = polygon.get("coordinates") if isinstance(polygon, dict) else polygon
    if not isinstance(coordinates, list) or not coordinates:
        return None
    ring = coordinates[0] if isinstance(coordinates[0], list) and coordinates[0] and isinstance(coordinates[0][0], list) else coordinates
    vertices: list[tuple[float, float]] = []
    for point in ring:
        if not isinstance(point, (list, tuple)) or len(point) < 2:
            return None
        lng, lat = point[0], point[1]
        vertices.append((float(lat), float(lng)))
    return vertices


class Geofence(FleetBaseModel):
    """A named virtual boundary, circular or polygonal.

    Circular fences use ``center`` and ``radius_m`` (metres). Polygon fences
    use ``vertices``, an ordered ring of ``(lat, lng)`` pairs. Stored rows in
    the flat ``center_latitude``/``center_longitude``/``radius`` shape, and
    GeoJSON ``polygon_coordinates``, are accepted as well.
    """

    id: str
    organization_id: str
    name: str = ""
    type: GeofenceType = Field(validation_alias=AliasChoices("type", "fenceType", "fence_type"))
    center: Location | None = None
    radius_m: float | None = Field(default=None, gt=0.0, validation_alias=AliasChoices("radius_m", "radiusM", "radius"))
    vertices: tuple[tuple[float, float], ...] = ()
    alert_on_entry: bool = True
    alert_on_exit: bool = True
    active: bool = True

    @model_validator(mode="before")
    @classmethod
    def _accept_stored_shape(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        working = dict(values)
        if "center" not in working:
            lat = working.pop("center_latitude", working.pop("centerLatitude", None))
            lng = working.pop("center_longitude", working.pop("centerLongitude", None))
            if lat is not None and lng is not None:
                working["center"] = {"lat": float(lat), "lng": float(lng)}
        if "vertices" not in working:
            polygon = working.pop("polygon_coordinates", working.pop("polygonCoordinates", None))
            if polygon is not None:
                vertices = _geojson_ring_to_vertices(polygon)
                if vertices is not None:
                    working["vertices"] = vertices
        return working

    @model_validator(mode="after")
    def _check_geometry(self) -> Geofence:
        if self.type == GeofenceType.CIRCULAR and (self.center is None or self.radius_m is None):
            raise ValueError(f"circular geofence {self.id} needs center and radius")
        if self.type == GeofenceType.POLYGON and len(self.vertices) < 3:
            raise ValueError(f"polygon geofence {self.id} needs at least three vertices")
        return self

    def contains(self, lat: float, lng: float) -> bool:
        if self.type == GeofenceType.CIRCULAR:
            assert self.center is not None and self.radius_m is not None  # noqa: S101
            return point_in_circle(lat, lng, self.center.lat, self.center.lng, self.radius_m)
        return point_in_polygon(lat, lng, self.vertices)
