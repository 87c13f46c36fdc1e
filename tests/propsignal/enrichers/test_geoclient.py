"""
Tests for the NYC Geoclient client
"""
import asyncio
from unittest.mock import Mock

import pytest
import requests

from src.propsignal.enrichers.geoclient import (
    NOT_CONFIGURED_ERROR,
    GeoclientClient,
    parse_house_number_and_street,
    rate_limit_window,
)
from src.propsignal.errors import AddressParseError, ConfigurationError, GeocodingError


def geoclient_response(return_code="00", **overrides):
    address = {
        "geosupportReturnCode": return_code,
        "houseNumber": "350",
        "boePreferredStreetName": "WEST 42 STREET",
        "bbl": "1010330001",
        "buildingIdentificationNumber": "1024978",
        "latitude": "40.7577",
        "longitude": "-73.9918",
        "zipCode": "10036",
        "boroughCode1In": "1",
        "message": "ADDRESS NOT FOUND",
    }
    address.update(overrides)
    response = Mock()
    response.ok = True
    response.status_code = 200
    response.json.return_value = {"address": address}
    return response


@pytest.fixture
def http_session():
    session = Mock(spec=requests.Session)
    session.get.return_value = geoclient_response()
    return session


class TestParsing:
    """Tests for address parsing helpers"""

    def test_parse_house_number_and_street(self):
        assert parse_house_number_and_street("350 West 42nd Street") == ("350", "West 42nd Street")
        assert parse_house_number_and_street("31-15 STEINWAY ST") == ("31-15", "STEINWAY ST")

    def test_parse_without_house_number(self):
        with pytest.raises(AddressParseError):
            parse_house_number_and_street("Broadway")

    def test_rate_limit_window(self):
        assert rate_limit_window(40, 10) == (10, 0.25)
        assert rate_limit_window(5, 10) == (5, 1.0)

    def test_rate_limit_window_rejects_zero(self):
        with pytest.raises(ValueError):
            rate_limit_window(0, 10)


class TestGeoclientClient:
    """Tests for single-address geocoding"""

    def test_not_configured(self, http_session):
        client = GeoclientClient(api_key="", session=http_session)

        assert client.is_available() is False
        with pytest.raises(ConfigurationError):
            client.normalize("350 West 42nd Street", "MANHATTAN")
        http_session.get.assert_not_called()

    def test_exact_match(self, http_session):
        client = GeoclientClient(api_key="key", session=http_session)

        result = client.normalize("350 West 42nd Street", "manhattan")

        assert result.success is True
        assert result.confidence == 1.0
        assert result.method == "geoclient"
        assert result.bbl == "1010330001"
        assert result.normalized_address == "350 WEST 42 STREET"
        assert result.latitude == pytest.approx(40.7577)
        assert result.borough == "MANHATTAN"

        params = http_session.get.call_args.kwargs["params"]
        assert params == {"houseNumber": "350", "street": "West 42nd Street", "borough": "manhattan"}

    def test_approximate_match_with_zip(self, http_session):
        http_session.get.return_value = geoclient_response("01")
        client = GeoclientClient(api_key="key", session=http_session)

        result = client.normalize("350 West 42nd Street", "10036")

        assert result.confidence == 0.9
        assert http_session.get.call_args.kwargs["params"]["zip"] == "10036"

    def test_unresolvable_return_code(self, http_session):
        http_session.get.return_value = geoclient_response("42")
        client = GeoclientClient(api_key="key", session=http_session)

        with pytest.raises(GeocodingError, match="ADDRESS NOT FOUND"):
            client.normalize("1 Nowhere Street", "10036")

    def test_http_error(self, http_session):
        response = Mock(ok=False, status_code=401, text="Access denied")
        http_session.get.return_value = response
        client = GeoclientClient(api_key="key", session=http_session)

        with pytest.raises(GeocodingError, match="401"):
            client.normalize("350 West 42nd Street", "10036")

    def test_invalid_location(self, http_session):
        client = GeoclientClient(api_key="key", session=http_session)

        with pytest.raises(AddressParseError):
            client.normalize("350 West 42nd Street", "Hoboken")

    @pytest.mark.parametrize("overrides", [
        {"latitude": "N/A"},
        {"longitude": "NaN"},
        {"latitude": "91.5"},
        {"latitude": ["40.7577"]},
    ])
    def test_unusable_coordinates_raise_geocoding_error(self, http_session, overrides):
        http_session.get.return_value = geoclient_response(**overrides)
        client = GeoclientClient(api_key="key", session=http_session)

        with pytest.raises(GeocodingError):
            client.normalize("350 West 42nd Street", "10036")

    def test_non_object_payload(self, http_session):
        http_session.get.return_value.json.return_value = ["unexpected"]
        client = GeoclientClient(api_key="key", session=http_session)

        with pytest.raises(GeocodingError, match="No address data"):
            client.normalize("350 West 42nd Street", "10036")

    def test_try_normalize_converts_failures(self, http_session):
        http_session.get.side_effect = requests.ConnectionError("boom")
        client = GeoclientClient(api_key="key", session=http_session)

        result = client.try_normalize("350 West 42nd Street", "10036")

        assert result.success is False
        assert result.confidence == 0.0
        assert "boom" in result.error


class TestBatchNormalize:
    """Tests for rate-limited batch geocoding"""

    def test_not_configured_returns_failures_without_requests(self, http_session):
        client = GeoclientClient(api_key="", session=http_session)

        results = asyncio.run(client.batch_normalize([("350 West 42nd Street", "10036")] * 3))

        assert len(results) == 3
        assert all(not result.success for result in results)
        assert all(result.error == NOT_CONFIGURED_ERROR for result in results)
        http_session.get.assert_not_called()

    def test_windows_are_spaced(self, http_session):
        """25 addresses at 10 concurrent / 40 per second: three windows, two waits"""
        client = GeoclientClient(api_key="key", session=http_session)
        waits = []
        progress = []

        async def fake_sleep(seconds):
            waits.append(seconds)

        results = asyncio.run(client.batch_normalize(
            [(f"{n} Broadway", "10006") for n in range(1, 26)],
            max_per_second=40,
            max_concurrent=10,
            on_progress=lambda done, total: progress.append((done, total)),
            sleep=fake_sleep,
            clock=lambda: 0.0,
        ))

        assert len(results) == 25
        assert http_session.get.call_count == 25
        assert waits == [0.25, 0.25]
        assert progress == [(10, 25), (20, 25), (25, 25)]

    def test_results_keep_input_order(self, http_session):
        def respond(url, params, headers, timeout):
            return geoclient_response(houseNumber=params["houseNumber"])

        http_session.get.side_effect = respond
        client = GeoclientClient(api_key="key", session=http_session)

        async def no_sleep(seconds):
            return None

        results = asyncio.run(client.batch_normalize(
            [(f"{n} Broadway", "10006") for n in range(1, 6)],
            max_per_second=40,
            max_concurrent=2,
            sleep=no_sleep,
        ))

        assert [result.normalized_address.split()[0] for result in results] == ["1", "2", "3", "4", "5"]

    def test_bad_coordinate_fails_only_its_address(self, http_session):
        """A non-numeric latitude in one response does not abort the batch"""
        def respond(url, params, headers, timeout):
            if params["houseNumber"] == "2":
                return geoclient_response(houseNumber="2", latitude="N/A")
            return geoclient_response(houseNumber=params["houseNumber"])

        http_session.get.side_effect = respond
        client = GeoclientClient(api_key="key", session=http_session)

        async def no_sleep(seconds):
            return None

        results = asyncio.run(client.batch_normalize(
            [("1 Broadway", "10006"), ("2 Broadway", "10006")],
            max_per_second=40,
            max_concurrent=2,
            sleep=no_sleep,
        ))

        assert len(results) == 2
        assert results[0].success is True
        assert results[0].latitude == 40.7577
        assert results[1].success is False
        assert "latitude" in results[1].error
