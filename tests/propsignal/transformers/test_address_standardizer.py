"""
Unit tests for address_standardizer module
"""
import pytest

from src.propsignal.transformers.address_standardizer import AddressStandardizer


class TestNormalize:
    """Tests for the canonical address string"""

    @pytest.mark.parametrize("raw,expected", [
        ("350 West 42nd Street, Apt. 4B", "350 W 42 ST"),
        ("350 W 42ND ST", "350 W 42 ST"),
        ("1 Fifth Avenue Unit 7", "1 FIFTH AVE"),
        ("100 Broadway #12", "100 BROADWAY"),
        ("31-15 Steinway Street", "31-15 STEINWAY ST"),
        ("200 East 3rd St Floor 2", "200 E 3 ST"),
        ("789 Elm Street APT 4B", "789 ELM ST"),
        ("456 North Oak Avenue", "456 N OAK AVE"),
    ])
    def test_normalize_examples(self, raw, expected):
        """Directionals, street types and ordinals are abbreviated; units dropped"""
        assert AddressStandardizer().normalize(raw) == expected

    def test_normalize_leaves_embedded_abbreviations(self):
        """Street names containing a unit or type token are untouched"""
        standardizer = AddressStandardizer()

        assert standardizer.normalize("123 Flatbush Avenue") == "123 FLATBUSH AVE"
        assert standardizer.normalize("55 Stanton Street") == "55 STANTON ST"

    def test_normalize_is_idempotent(self):
        """Normalizing a normalized address returns it unchanged"""
        standardizer = AddressStandardizer()
        once = standardizer.normalize("350 West 42nd Street, Apt. 4B")

        assert standardizer.normalize(once) == once

    def test_normalize_empty(self):
        """Empty input gives an empty string"""
        standardizer = AddressStandardizer()

        assert standardizer.normalize(None) == ""
        assert standardizer.normalize("") == ""


class TestAddressKey:
    """Tests for the ADDRESS|ZIP composite key"""

    def test_address_key(self):
        standardizer = AddressStandardizer()

        assert standardizer.address_key("350 West 42nd Street", "10036-1234") == "350 W 42 ST|10036"

    def test_address_key_requires_both_parts(self):
        standardizer = AddressStandardizer()

        assert standardizer.address_key("350 West 42nd Street", None) is None
        assert standardizer.address_key(None, "10036") is None
        assert standardizer.address_key("350 West 42nd Street", "100") is None


class TestZipAndUnitCleaning:
    """Tests for ZIP normalization and unit designation cleaning"""

    def test_normalize_zip(self):
        """Test ZIP code normalization"""
        assert AddressStandardizer.normalize_zip("10001") == "10001"
        assert AddressStandardizer.normalize_zip("10001-1234") == "10001"
        assert AddressStandardizer.normalize_zip("11201.0") == "11201"
        assert AddressStandardizer.normalize_zip("123") is None
        assert AddressStandardizer.normalize_zip(None) is None

    def test_clean_unit_designation(self):
        """Prefixes are stripped; placeholders become None"""
        assert AddressStandardizer.clean_unit_designation("APT 4B") == "4B"
        assert AddressStandardizer.clean_unit_designation("Unit 12") == "12"
        assert AddressStandardizer.clean_unit_designation("#PH1") == "PH1"
        assert AddressStandardizer.clean_unit_designation("3C") == "3C"

    @pytest.mark.parametrize("placeholder", [None, "", "-", "0", "  "])
    def test_clean_unit_designation_placeholders(self, placeholder):
        assert AddressStandardizer.clean_unit_designation(placeholder) is None
