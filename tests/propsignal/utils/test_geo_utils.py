"""
Tests for geographic utility functions
"""
import math

import pytest

from src.propsignal.utils.geo_utils import (
    cell_window,
    equirectangular_distance,
    geometry_point,
    grid_cell,
    ring_centroid,
)


class TestGridCell:
    """Tests for grid bucketing"""

    def test_grid_cell_floors_coordinates(self):
        assert grid_cell(40.7128, -74.0065) == (40712, -74007)

    def test_nearby_points_share_or_neighbor_cells(self):
        """Points ~14m apart fall in the same or an adjacent cell"""
        a = grid_cell(40.7128, -74.0060)
        b = grid_cell(40.7129, -74.0061)

        assert abs(a[0] - b[0]) <= 1
        assert abs(a[1] - b[1]) <= 1

    def test_two_km_away_is_outside_transit_window(self):
        """A point ~2km north is more than five cells away"""
        origin = grid_cell(40.7128, -74.0060)
        far = grid_cell(40.7308, -74.0060)

        assert far not in set(cell_window(origin, 5))

    def test_nan_coordinate_raises(self):
        with pytest.raises(ValueError):
            grid_cell(float("nan"), -74.0)


class TestCellWindow:
    """Tests for the square cell window"""

    def test_window_size(self):
        cells = list(cell_window((0, 0), 5))

        assert len(cells) == 121
        assert (5, -5) in cells
        assert (6, 0) not in cells

    def test_zero_radius(self):
        assert list(cell_window((3, 4), 0)) == [(3, 4)]


class TestDistance:
    """Tests for equirectangular distance"""

    def test_zero_distance(self):
        assert equirectangular_distance(40.7, -74.0, 40.7, -74.0) == 0

    def test_latitude_degree_fraction(self):
        """0.001 degrees of latitude is 111 meters"""
        assert equirectangular_distance(40.7, -74.0, 40.701, -74.0) == pytest.approx(111.0, abs=0.01)

    def test_longitude_scaled_by_cosine(self):
        expected = 0.001 * 111000 * math.cos(math.radians(40.7))
        assert equirectangular_distance(40.7, -74.0, 40.7, -73.999) == pytest.approx(expected, rel=1e-6)


class TestGeometryPoint:
    """Tests for GeoJSON representative points"""

    def test_point(self):
        assert geometry_point({"type": "Point", "coordinates": [-73.99, 40.75]}) == (40.75, -73.99)

    def test_polygon_centroid(self):
        ring = [[-74.0, 40.7], [-73.98, 40.7], [-73.98, 40.72], [-74.0, 40.72]]
        lat, lon = geometry_point({"type": "Polygon", "coordinates": [ring]})

        assert lat == pytest.approx(40.71)
        assert lon == pytest.approx(-73.99)

    def test_multipolygon_uses_first_ring(self):
        ring = [[-74.0, 40.7], [-74.0, 40.8]]
        assert geometry_point({"type": "MultiPolygon", "coordinates": [[ring]]}) == pytest.approx((40.75, -74.0))

    def test_unusable_geometry(self):
        assert geometry_point(None) is None
        assert geometry_point({"type": "LineString", "coordinates": [[0, 0], [1, 1]]}) is None
        assert geometry_point({"type": "Point", "coordinates": []}) is None
        assert ring_centroid([]) is None

    @pytest.mark.parametrize("geometry", [
        {"type": "Point", "coordinates": [-73.99]},
        {"type": "Point", "coordinates": ["west", "north"]},
        {"type": "Point", "coordinates": -73.99},
        {"type": "Point", "coordinates": [None, 40.75]},
        {"type": "Polygon", "coordinates": [-74.0, 40.7]},
        {"type": "Polygon", "coordinates": [[[-74.0], [40.7]]]},
        {"type": "MultiPolygon", "coordinates": [[-74.0, 40.7]]},
        {"type": "MultiPolygon", "coordinates": [[]]},
    ])
    def test_malformed_coordinates_give_none(self, geometry):
        assert geometry_point(geometry) is None

    def test_ring_skips_malformed_positions(self):
        ring = [[-74.0, 40.7], [-73.98], "bad", [-74.0, 40.8]]

        assert ring_centroid(ring) == pytest.approx((40.75, -74.0))
