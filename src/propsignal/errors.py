"""
Error Taxonomy

Typed errors raised across the pipeline. Unmatched entity resolution is a
recorded outcome, not an exception.
"""
from typing import Optional


class PropSignalError(Exception):
    """Base class for all pipeline errors."""


class TransientFetchError(PropSignalError):
    """A dataset page could not be fetched after exhausting retries."""

    def __init__(self, dataset: str, offset: int, attempts: int, cause: Optional[BaseException] = None):
        self.dataset = dataset
        self.offset = offset
        self.attempts = attempts
        self.cause = cause
        super().__init__(
            f"{dataset}: page at offset {offset} failed after {attempts} attempts: {cause}"
        )


class MalformedRecordError(PropSignalError):
    """An upstream record is missing its natural key or has unparseable fields."""

    def __init__(self, dataset: str, reason: str):
        self.dataset = dataset
        self.reason = reason
        super().__init__(f"{dataset}: {reason}")


class ConfigurationError(PropSignalError):
    """A required credential or setting is absent."""


class AddressParseError(PropSignalError):
    """Free-text address could not be split into house number and street."""


class GeocodingError(PropSignalError):
    """The geocoder rejected the address or returned an unusable response."""


class PerEntityComputationError(PropSignalError):
    """Signal computation failed for a single property."""

    def __init__(self, entity_id: str, cause: BaseException):
        self.entity_id = entity_id
        self.cause = cause
        super().__init__(f"{entity_id}: {type(cause).__name__}: {cause}")
