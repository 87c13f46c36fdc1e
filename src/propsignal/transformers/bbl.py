"""
BBL and Borough Helpers

Borough-Block-Lot identifiers are 10 digits: borough (1), block (5), lot (4).
Open data emits them in several shapes ("1001230001", "1001230001.00000000",
separate boro/block/lot columns); everything funnels through normalize_bbl.
"""
import math
import re
from typing import Optional, Union

BOROUGH_NAMES = {
    "1": "MANHATTAN",
    "2": "BRONX",
    "3": "BROOKLYN",
    "4": "QUEENS",
    "5": "STATEN ISLAND",
}

# Names, county names, two-letter and one-letter codes used across datasets
BOROUGH_CODES = {
    "MANHATTAN": "1", "NEW YORK": "1", "MN": "1", "M": "1",
    "BRONX": "2", "THE BRONX": "2", "BX": "2", "X": "2",
    "BROOKLYN": "3", "KINGS": "3", "BK": "3", "K": "3",
    "QUEENS": "4", "QN": "4", "Q": "4",
    "STATEN ISLAND": "5", "RICHMOND": "5", "SI": "5", "R": "5",
}

_BBL_PATTERN = re.compile(r"^[1-5]\d{9}$")


def borough_code(value: Optional[Union[str, int]]) -> Optional[str]:
    """
    Map a borough name, abbreviation or numeric code to "1".."5".

    Returns:
        Borough code, or None when the value is not a borough
    """
    if value is None:
        return None

    normalized = str(value).strip().upper()
    if normalized in BOROUGH_NAMES:
        return normalized
    return BOROUGH_CODES.get(normalized)


def borough_name(value: Optional[Union[str, int]]) -> Optional[str]:
    """Map any borough representation to its upper-case name."""
    code = borough_code(value)
    return BOROUGH_NAMES.get(code) if code else None


def normalize_bbl(value: Optional[Union[str, int, float]]) -> Optional[str]:
    """
    Normalize a BBL to 10 digits.

    Decimal suffixes (PLUTO emits "1001230001.00000000") and separators are
    dropped. Values that are not a valid BBL afterwards return None.

    Args:
        value: Raw BBL

    Returns:
        10-digit BBL or None
    """
    if value is None:
        return None

    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        value = int(value)

    text = str(value).strip().split(".")[0]
    digits = re.sub(r"\D", "", text)

    if _BBL_PATTERN.match(digits):
        return digits
    return None


def build_bbl(
    borough: Optional[Union[str, int]],
    block: Optional[Union[str, int]],
    lot: Optional[Union[str, int]]
) -> Optional[str]:
    """
    Assemble a BBL from its components.

    Args:
        borough: Borough code or name
        block: Tax block (up to 5 digits)
        lot: Tax lot (up to 4 digits)

    Returns:
        10-digit BBL or None if any component is missing or out of range
    """
    code = borough_code(borough)
    if not code or block is None or lot is None:
        return None

    block_digits = re.sub(r"\D", "", str(block).split(".")[0])
    lot_digits = re.sub(r"\D", "", str(lot).split(".")[0])
    if not block_digits or not lot_digits:
        return None
    if len(block_digits.lstrip("0")) > 5 or len(lot_digits.lstrip("0")) > 4:
        return None

    return normalize_bbl(f"{code}{int(block_digits):05d}{int(lot_digits):04d}")
