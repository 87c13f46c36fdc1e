"""
Address Normalizer

Single entry point over the two normalizers: Geoclient when configured,
rule-based otherwise or when the geocoder cannot resolve an address. The
two results are never blended; a geocoder failure simply yields the
rule-based string.
"""
from typing import List, Optional, Sequence, Tuple

from src.propsignal.enrichers.geoclient import GeoclientClient
from src.propsignal.errors import AddressParseError, GeocodingError
from src.propsignal.models.addresses import RULE_BASED_METHOD, NormalizedAddress
from src.propsignal.transformers.address_standardizer import AddressStandardizer
from src.propsignal.transformers.bbl import borough_name
from src.propsignal.utils.logger import get_logger

logger = get_logger(__name__)


class AddressNormalizer:
    """Composite normalizer (geocoder first, rule-based fallback)."""

    def __init__(
        self,
        geocoder: Optional[GeoclientClient] = None,
        standardizer: Optional[AddressStandardizer] = None,
    ):
        self.geocoder = geocoder
        self.standardizer = standardizer or AddressStandardizer()

    @property
    def geocoding_enabled(self) -> bool:
        return self.geocoder is not None and self.geocoder.is_available()

    def rule_based(self, address: str, borough_or_zip: Optional[str] = None) -> NormalizedAddress:
        """Deterministic token-substitution result; always succeeds."""
        location = str(borough_or_zip or "").strip()
        return NormalizedAddress(
            normalized_address=self.standardizer.normalize(address),
            zip_code=self.standardizer.normalize_zip(location) if location.isdigit() else None,
            borough=borough_name(location),
            confidence=None,
            method=RULE_BASED_METHOD,
        )

    def normalize(self, address: str, borough_or_zip: Optional[str] = None) -> NormalizedAddress:
        """
        Normalize one address.

        Args:
            address: Free-text street address
            borough_or_zip: Borough name/code or ZIP

        Returns:
            Geocoded result when available and successful, otherwise rule-based
        """
        if self.geocoding_enabled and borough_or_zip:
            try:
                return self.geocoder.normalize(address, borough_or_zip)
            except (AddressParseError, GeocodingError) as e:
                logger.debug("geocoder_fallback_to_rules", address=address, error=str(e))

        return self.rule_based(address, borough_or_zip)

    async def normalize_batch(
        self,
        addresses: Sequence[Tuple[str, Optional[str]]],
        **batch_options
    ) -> List[NormalizedAddress]:
        """
        Normalize many addresses under the geocoder's rate limit.

        Failed geocodes are replaced by their rule-based result.
        """
        if not self.geocoding_enabled:
            return [self.rule_based(address, location) for address, location in addresses]

        geocoded = await self.geocoder.batch_normalize(
            [(address, location or "") for address, location in addresses],
            **batch_options
        )

        results = []
        fallbacks = 0
        for (address, location), result in zip(addresses, geocoded):
            if result.success:
                results.append(result)
            else:
                fallbacks += 1
                results.append(self.rule_based(address, location))

        logger.info(
            "address_batch_normalized",
            total=len(results),
            geocoded=len(results) - fallbacks,
            rule_based=fallbacks,
        )
        return results
