"""
Geographic Utility Functions

Grid bucketing and distance helpers used by the proximity index.

Distances use an equirectangular approximation which is accurate to a few
meters at city scale. Do not use it across regions.
"""
from math import cos, floor, isfinite, radians
from typing import Any, Iterable, Optional, Sequence

METERS_PER_DEGREE = 111000.0
GRID_CELLS_PER_DEGREE = 1000


def grid_cell(latitude: float, longitude: float) -> tuple[int, int]:
    """
    Map a coordinate to its grid cell (~111m on a side).

    Raises:
        ValueError: if either coordinate is NaN
        OverflowError: if either coordinate is infinite
    """
    return (
        floor(latitude * GRID_CELLS_PER_DEGREE),
        floor(longitude * GRID_CELLS_PER_DEGREE),
    )


def cell_window(cell: tuple[int, int], radius: int) -> Iterable[tuple[int, int]]:
    """Yield every cell in the (2*radius+1)^2 square centered on cell."""
    lat_cell, lng_cell = cell
    for d_lat in range(-radius, radius + 1):
        for d_lng in range(-radius, radius + 1):
            yield (lat_cell + d_lat, lng_cell + d_lng)


def equirectangular_distance(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float
) -> float:
    """
    Planar distance in meters between two nearby points.

    Args:
        lat1: Latitude of origin (decimal degrees)
        lon1: Longitude of origin (decimal degrees)
        lat2: Latitude of target (decimal degrees)
        lon2: Longitude of target (decimal degrees)

    Returns:
        Distance in meters

    Formula:
        dy = Δlat × 111000
        dx = Δlon × 111000 × cos(lat1)
        distance = √(dx² + dy²)
    """
    d_lat = (lat2 - lat1) * METERS_PER_DEGREE
    d_lon = (lon2 - lon1) * METERS_PER_DEGREE * cos(radians(lat1))
    return (d_lat ** 2 + d_lon ** 2) ** 0.5


def _lon_lat(point: Any) -> Optional[tuple[float, float]]:
    """(lon, lat) floats from a GeoJSON position, or None when malformed."""
    if not isinstance(point, (list, tuple)) or len(point) < 2:
        return None
    try:
        lon, lat = float(point[0]), float(point[1])
    except (TypeError, ValueError):
        return None
    if not (isfinite(lon) and isfinite(lat)):
        return None
    return lon, lat


def ring_centroid(ring: Sequence[Sequence[float]]) -> Optional[tuple[float, float]]:
    """
    Vertex average of a GeoJSON ring of [lon, lat] pairs.

    Malformed positions are ignored.

    Returns:
        (latitude, longitude) or None when no usable position remains
    """
    if not isinstance(ring, (list, tuple)):
        return None
    points = [position for position in map(_lon_lat, ring) if position is not None]
    if not points:
        return None
    lon = sum(point[0] for point in points) / len(points)
    lat = sum(point[1] for point in points) / len(points)
    return lat, lon


def _first_item(value: Any) -> Any:
    if isinstance(value, (list, tuple)) and value:
        return value[0]
    return None


def geometry_point(geometry: Optional[dict]) -> Optional[tuple[float, float]]:
    """
    Representative (latitude, longitude) for a GeoJSON geometry.

    Points are returned as-is; polygons and multipolygons use the centroid
    of their first outer ring. Short or mis-nested coordinates give None.
    """
    if not isinstance(geometry, dict):
        return None

    geometry_type = geometry.get("type")
    coordinates = geometry.get("coordinates")
    if not coordinates:
        return None

    if geometry_type == "Point":
        position = _lon_lat(coordinates)
        return (position[1], position[0]) if position else None
    if geometry_type == "Polygon":
        return ring_centroid(_first_item(coordinates))
    if geometry_type == "MultiPolygon":
        return ring_centroid(_first_item(_first_item(coordinates)))
    return None
