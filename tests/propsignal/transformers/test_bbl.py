"""
Tests for BBL and borough helpers
"""
import pytest

from src.propsignal.transformers.bbl import borough_code, borough_name, build_bbl, normalize_bbl


class TestNormalizeBbl:
    """Tests for normalize_bbl"""

    @pytest.mark.parametrize("raw,expected", [
        ("1001230001", "1001230001"),
        ("1001230001.00000000", "1001230001"),
        (1001230001, "1001230001"),
        (1001230001.0, "1001230001"),
        ("1-00123-0001", "1001230001"),
    ])
    def test_accepted_shapes(self, raw, expected):
        assert normalize_bbl(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "123", "6001230001", "10012300011", float("nan")])
    def test_invalid_values(self, raw):
        """Wrong length, bad borough digit and NaN yield None"""
        assert normalize_bbl(raw) is None


class TestBuildBbl:
    """Tests for build_bbl"""

    def test_build_from_components(self):
        assert build_bbl("1", "123", "1") == "1001230001"
        assert build_bbl("BROOKLYN", "00456", "0078") == "3004560078"
        assert build_bbl(4, "12.0", "5") == "4000120005"

    def test_missing_or_out_of_range_components(self):
        assert build_bbl(None, "123", "1") is None
        assert build_bbl("1", None, "1") is None
        assert build_bbl("1", "123456", "1") is None
        assert build_bbl("1", "123", "12345") is None
        assert build_bbl("9", "123", "1") is None


class TestBorough:
    """Tests for borough lookups"""

    def test_borough_code_variants(self):
        assert borough_code("Manhattan") == "1"
        assert borough_code("KINGS") == "3"
        assert borough_code("QN") == "4"
        assert borough_code(5) == "5"
        assert borough_code("Jersey City") is None
        assert borough_code(None) is None

    def test_borough_name(self):
        assert borough_name("2") == "BRONX"
        assert borough_name("richmond") == "STATEN ISLAND"
        assert borough_name("") is None
