"""
NYC Geoclient Geocoder

Optional address normalization through the NYC Geoclient v2 API. The API
key is read from NYC_GEOCLIENT_API_KEY; without it the client reports itself
unavailable and batch calls return "not configured" results without making
any request.
"""
import asyncio
import math
import re
import time
from typing import Callable, List, Optional, Sequence, Tuple

import requests
from pydantic import ValidationError

from config.settings import settings
from src.propsignal.errors import AddressParseError, ConfigurationError, GeocodingError
from src.propsignal.models.addresses import GEOCLIENT_METHOD, NormalizedAddress
from src.propsignal.transformers.bbl import BOROUGH_NAMES, borough_code, normalize_bbl
from src.propsignal.utils.logger import get_logger

logger = get_logger(__name__)

HOUSE_NUMBER_PATTERN = re.compile(r"^(\d+[-\d]*)\s+(.+)$")
ZIP_PATTERN = re.compile(r"^\d{5}$")

# geosupportReturnCode -> confidence
RETURN_CODE_CONFIDENCE = {
    "00": 1.0,
    "01": 0.9,
}

NOT_CONFIGURED_ERROR = "NYC Geoclient API key not configured"


def parse_house_number_and_street(address: str) -> Tuple[str, str]:
    """
    Split "31-15 STEINWAY ST" into ("31-15", "STEINWAY ST").

    Raises:
        AddressParseError: if the address does not start with a house number
    """
    match = HOUSE_NUMBER_PATTERN.match((address or "").strip())
    if not match:
        raise AddressParseError(f"Could not parse house number from address: {address}")
    return match.group(1), match.group(2)


def _coordinate(result: dict, key: str) -> Optional[float]:
    """
    Float coordinate from a Geoclient result field.

    Raises:
        GeocodingError: value present but not a finite number
    """
    value = result.get(key)
    if value is None or value == "":
        return None
    try:
        coordinate = float(value)
    except (TypeError, ValueError) as e:
        raise GeocodingError(f"Invalid {key} in Geoclient response: {value!r}") from e
    if not math.isfinite(coordinate):
        raise GeocodingError(f"Invalid {key} in Geoclient response: {value!r}")
    return coordinate


def _optional_text(value) -> Optional[str]:
    return str(value) if value not in (None, "") else None
def rate_limit_window(max_per_second: int, max_concurrent: int) -> Tuple[int, float]:
    """
    Window size and minimum spacing between window starts.

    A window launches at most `size` requests, and consecutive windows start
    at least `delay` seconds apart, so the request rate never exceeds
    max_per_second.

    Returns:
        (window_size, delay_seconds)
    """
    if max_per_second < 1 or max_concurrent < 1:
        raise ValueError("max_per_second and max_concurrent must be positive")

    size = min(max_concurrent, max_per_second)
    delay_ms = math.ceil(1000 / max_per_second * size)
    return size, delay_ms / 1000.0


class GeoclientClient:
    """
    Client for the Geoclient address endpoint.

    Uses a requests.Session with a per-request timeout.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: Optional[int] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.geoclient_api_key
        self.base_url = (base_url or settings.geoclient_base_url).rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout or settings.geoclient_timeout_seconds

        logger.info("geoclient_initialized", available=self.is_available())

    def is_available(self) -> bool:
        """Capability check: True when an API key is configured."""
        return bool(self.api_key)

    def normalize(self, address: str, borough_or_zip: str) -> NormalizedAddress:
        """
        Geocode one address.

        Args:
            address: Free-text street address starting with a house number
            borough_or_zip: Borough name/code or 5-digit ZIP

        Returns:
            NormalizedAddress with confidence 1.0 (exact) or 0.9 (approximate)

        Raises:
            ConfigurationError: no API key
            AddressParseError: address or borough/ZIP cannot be interpreted
            GeocodingError: HTTP failure or unresolvable address
        """
        if not self.is_available():
            raise ConfigurationError(NOT_CONFIGURED_ERROR)

        house_number, street = parse_house_number_and_street(address)
        params = {"houseNumber": house_number, "street": street}

        location = str(borough_or_zip or "").strip()
        code = borough_code(location)
        if code:
            params["borough"] = BOROUGH_NAMES[code].lower()
        elif ZIP_PATTERN.match(location):
            params["zip"] = location
        else:
            raise AddressParseError(f"Invalid borough or ZIP code: {borough_or_zip}")

        try:
            response = self.session.get(
                f"{self.base_url}/address.json",
                params=params,
                headers={
                    "Ocp-Apim-Subscription-Key": self.api_key,
                    "Cache-Control": "no-cache",
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise GeocodingError(f"Geoclient request failed: {e}") from e

        if not response.ok:
            raise GeocodingError(
                f"Geoclient API error: {response.status_code} - {response.text[:200]}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise GeocodingError("Geoclient returned invalid JSON") from e

        return self._parse_response(data, house_number, street)

    def _parse_response(self, data: dict, house_number: str, street: str) -> NormalizedAddress:
        result = data.get("address") if isinstance(data, dict) else None
        if not isinstance(result, dict) or not result:
            raise GeocodingError("No address data in response")

        return_code = result.get("geosupportReturnCode") or ""
        confidence = RETURN_CODE_CONFIDENCE.get(return_code)
        if confidence is None:
            raise GeocodingError(
                result.get("message") or result.get("message2") or f"Geoclient return code: {return_code}"
            )

        normalized_street = result.get("boePreferredStreetName") or result.get("giStreetName1") or street
        number = result.get("houseNumber") or house_number

        try:
            return NormalizedAddress(
                normalized_address=f"{number} {normalized_street}".upper().strip(),
                bbl=normalize_bbl(result.get("bbl")),
                bin=_optional_text(result.get("buildingIdentificationNumber")),
                latitude=_coordinate(result, "latitude"),
                longitude=_coordinate(result, "longitude"),
                zip_code=_optional_text(result.get("zipCode")),
                borough=BOROUGH_NAMES.get(str(result.get("boroughCode1In") or "")[:1]),
                confidence=confidence,
                method=GEOCLIENT_METHOD,
            )
        except ValidationError as e:
            raise GeocodingError(f"Geoclient response out of range: {e.error_count()} invalid fields") from e

    def try_normalize(self, address: str, borough_or_zip: str) -> NormalizedAddress:
        """Geocode one address, converting failures into a failed result."""
        try:
            return self.normalize(address, borough_or_zip)
        except (ConfigurationError, AddressParseError, GeocodingError) as e:
            logger.debug("geocode_failed", address=address, error=str(e))
            return NormalizedAddress.failure(str(e))

    async def batch_normalize(
        self,
        addresses: Sequence[Tuple[str, str]],
        max_per_second: Optional[int] = None,
        max_concurrent: Optional[int] = None,
        on_progress: Optional[Callable[[int, int], None]] = None,
        sleep: Callable[[float], "asyncio.Future"] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> List[NormalizedAddress]:
        """
        Geocode many addresses under a hard rate limit.

        Addresses are processed in windows of at most max_concurrent
        requests; consecutive windows start no closer than the computed
        delay. Results are returned in input order.

        Args:
            addresses: (address, borough_or_zip) pairs
            max_per_second: Request ceiling (default from settings)
            max_concurrent: Concurrency ceiling (default from settings)
            on_progress: Called with (completed, total) after each window
            sleep: Async wait function (replaced in tests)
            clock: Monotonic clock (replaced in tests)

        Returns:
            One NormalizedAddress per input
        """
        if not self.is_available():
            logger.warning("geoclient_not_configured", addresses=len(addresses))
            return [NormalizedAddress.failure(NOT_CONFIGURED_ERROR) for _ in addresses]

        window_size, delay = rate_limit_window(
            max_per_second or settings.geoclient_max_per_second,
            max_concurrent or settings.geoclient_max_concurrent,
        )

        logger.info(
            "geoclient_batch_started",
            addresses=len(addresses),
            window_size=window_size,
            window_delay_seconds=delay,
        )

        results: List[NormalizedAddress] = []
        last_window_start: Optional[float] = None

        for start in range(0, len(addresses), window_size):
            if last_window_start is not None:
                wait = delay - (clock() - last_window_start)
                if wait > 0:
                    await sleep(wait)
            last_window_start = clock()

            window = addresses[start:start + window_size]
            window_results = await asyncio.gather(*(
                asyncio.to_thread(self.try_normalize, address, borough_or_zip)
                for address, borough_or_zip in window
            ))
            results.extend(window_results)

            if on_progress:
                on_progress(len(results), len(addresses))

        succeeded = sum(1 for result in results if result.success)
        logger.info(
            "geoclient_batch_completed",
            addresses=len(addresses),
            succeeded=succeeded,
            failed=len(results) - succeeded,
        )
        return results
