"""
Address Normalization Models

Result type shared by the rule-based normalizer and the Geoclient geocoder.
"""
from typing import Optional

from pydantic import BaseModel, Field

GEOCLIENT_METHOD = "geoclient"
RULE_BASED_METHOD = "rule_based"


class NormalizedAddress(BaseModel):
    """
    Outcome of normalizing one free-text address.

    Attributes:
        normalized_address: Canonical street address (empty when unusable)
        bbl: 10-digit BBL (geocoder only)
        bin: Building Identification Number (geocoder only)
        latitude: WGS84 latitude (geocoder only)
        longitude: WGS84 longitude (geocoder only)
        zip_code: 5-digit ZIP code
        borough: Borough name
        confidence: 1.0 exact geocode, 0.9 approximate geocode, None for
            rule-based strings
        method: geoclient or rule_based
        success: False when the geocoder could not resolve the address
        error: Failure description
    """

    normalized_address: str = Field("", description="Canonical street address")
    bbl: Optional[str] = Field(None, description="10-digit BBL")
    bin: Optional[str] = Field(None, description="Building Identification Number")
    latitude: Optional[float] = Field(None, description="WGS84 latitude", ge=-90, le=90)
    longitude: Optional[float] = Field(None, description="WGS84 longitude", ge=-180, le=180)
    zip_code: Optional[str] = Field(None, description="5-digit ZIP")
    borough: Optional[str] = Field(None, description="Borough name")
    confidence: Optional[float] = Field(None, description="Geocoding confidence", ge=0, le=1)
    method: str = Field(RULE_BASED_METHOD, description="Normalizer that produced the result")
    success: bool = Field(True, description="Whether normalization succeeded")
    error: Optional[str] = Field(None, description="Failure description")

    def has_coordinates(self) -> bool:
        """Check if result has coordinates."""
        return self.latitude is not None and self.longitude is not None

    @classmethod
    def failure(cls, error: str, method: str = GEOCLIENT_METHOD) -> "NormalizedAddress":
        return cls(success=False, confidence=0.0, method=method, error=error)
