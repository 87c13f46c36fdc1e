"""
Geospatial Proximity Index

Grid-bucketed nearest-neighbor lookups for subway stations and amenities.

Points are bucketed by (floor(lat*1000), floor(lon*1000)), roughly 111m
cells. A lookup only measures candidates inside a square window of cells
around the query point, so cost depends on local density rather than on the
size of the citywide table.
"""
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from src.propsignal.utils.geo_utils import cell_window, equirectangular_distance, grid_cell
from src.propsignal.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProximityPoint:
    """
    A candidate point.

    Attributes:
        key: Source identifier
        latitude: WGS84 latitude
        longitude: WGS84 longitude
        name: Display name
        category: Amenity category or "subway"
        lines: Subway routes serving a station
    """
    key: str
    latitude: float
    longitude: float
    name: Optional[str] = None
    category: Optional[str] = None
    lines: Tuple[str, ...] = field(default_factory=tuple)


class GeoGridIndex:
    """
    In-memory grid index over ProximityPoints.

    Built fresh for each run from staged rows; never shared across runs.
    """

    def __init__(self, window: int):
        """
        Args:
            window: Search radius in cells (5 for transit, 10 for amenities)
        """
        if window < 0:
            raise ValueError("window must be non-negative")
        self.window = window
        self._cells: Dict[Tuple[int, int], List[ProximityPoint]] = defaultdict(list)
        self._size = 0

    @classmethod
    def build(cls, points: Iterable[ProximityPoint], window: int) -> "GeoGridIndex":
        """
        Index every point with usable coordinates.

        Points whose coordinates are missing or not finite are skipped.
        """
        index = cls(window)
        skipped = 0
        for point in points:
            if not index.add(point):
                skipped += 1

        logger.info("geo_grid_index_built", points=len(index), skipped=skipped, window=window)
        return index

    def add(self, point: ProximityPoint) -> bool:
        """
        Add one point.

        Returns:
            False if the point has no usable coordinates
        """
        if point.latitude is None or point.longitude is None:
            return False
        try:
            cell = grid_cell(point.latitude, point.longitude)
        except (ValueError, OverflowError, TypeError):
            return False

        self._cells[cell].append(point)
        self._size += 1
        return True

    def __len__(self) -> int:
        return self._size

    def candidates(self, latitude: float, longitude: float) -> List[ProximityPoint]:
        """Points inside the cell window around a coordinate."""
        center = grid_cell(latitude, longitude)
        found: List[ProximityPoint] = []
        for cell in cell_window(center, self.window):
            bucket = self._cells.get(cell)
            if bucket:
                found.extend(bucket)
        return found

    def within(
        self,
        latitude: float,
        longitude: float,
        predicate: Optional[Callable[[ProximityPoint], bool]] = None
    ) -> List[Tuple[ProximityPoint, float]]:
        """
        Every windowed candidate with its distance, nearest first.

        Args:
            latitude: Query latitude
            longitude: Query longitude
            predicate: Optional candidate filter

        Returns:
            (point, distance_meters) pairs sorted by distance then key
        """
        measured = [
            (point, equirectangular_distance(latitude, longitude, point.latitude, point.longitude))
            for point in self.candidates(latitude, longitude)
            if predicate is None or predicate(point)
        ]
        measured.sort(key=lambda pair: (pair[1], pair[0].key))
        return measured

    def nearest(
        self,
        latitude: float,
        longitude: float,
        max_results: int = 1
    ) -> List[Tuple[ProximityPoint, float]]:
        """
        Closest candidates inside the window.

        Returns:
            Up to max_results (point, distance_meters) pairs; empty when the
            window holds no points
        """
        return self.within(latitude, longitude)[:max_results]

    def count_within(
        self,
        latitude: float,
        longitude: float,
        radius_meters: float,
        predicate: Optional[Callable[[ProximityPoint], bool]] = None
    ) -> int:
        """Number of windowed candidates no farther than radius_meters."""
        return sum(
            1 for _, distance in self.within(latitude, longitude, predicate)
            if distance <= radius_meters
        )
