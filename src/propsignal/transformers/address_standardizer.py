"""
Address Standardization Transformer

Rule-based normalization of NYC street addresses. Produces a canonical
string used as the last-resort resolution key when no BBL links a record.
"""
import re
from typing import Optional


class AddressStandardizer:
    """
    Rule-based NYC address normalization shared by every source system.

    Substitution is token-based so that street names containing an
    abbreviation (FLATBUSH, STANTON) are left intact.
    """

    # Street type abbreviations
    STREET_TYPES = {
        'ALLEY': 'ALY', 'AVENUE': 'AVE', 'AV': 'AVE', 'BOULEVARD': 'BLVD',
        'CIRCLE': 'CIR', 'COURT': 'CT', 'DRIVE': 'DR', 'EXPRESSWAY': 'EXPY',
        'HIGHWAY': 'HWY', 'LANE': 'LN', 'PARKWAY': 'PKWY', 'PLACE': 'PL',
        'ROAD': 'RD', 'STREET': 'ST', 'TERRACE': 'TER', 'TURNPIKE': 'TPKE',
        'PLAZA': 'PLZ', 'SQUARE': 'SQ', 'BROADWAY': 'BROADWAY', 'WAY': 'WAY'
    }

    # Directional abbreviations
    DIRECTIONS = {
        'NORTH': 'N', 'SOUTH': 'S', 'EAST': 'E', 'WEST': 'W',
        'NORTHEAST': 'NE', 'NORTHWEST': 'NW', 'SOUTHEAST': 'SE', 'SOUTHWEST': 'SW'
    }

    ORDINAL_PATTERN = re.compile(r'^(\d+)(ST|ND|RD|TH)$')
    UNIT_PATTERN = re.compile(
        r'(?:^|\s)(APARTMENT|APT|UNIT|SUITE|STE|FLOOR|FL|ROOM|RM|#)(?=[\s#.\d]|$)\.?\s*#?\s*([A-Z0-9\-]+)\b'
    )

    def normalize(self, address: Optional[str]) -> str:
        """
        Canonical street string: uppercase, abbreviated, unit stripped.

        Args:
            address: Free-text street address

        Returns:
            Canonical address (empty string for empty input)

        Example:
            "350 West 42nd Street, Apt. 4B" -> "350 W 42 ST"
        """
        if not address:
            return ""

        text = address.upper().replace('.', '').replace(',', ' ')
        text = self._strip_unit(text)

        tokens = []
        for token in text.split():
            if token.startswith('#'):
                continue
            ordinal = self.ORDINAL_PATTERN.match(token)
            if ordinal:
                token = ordinal.group(1)
            token = self.STREET_TYPES.get(token, token)
            token = self.DIRECTIONS.get(token, token)
            tokens.append(token)

        return ' '.join(tokens)

    def address_key(self, address: Optional[str], zip_code: Optional[str]) -> Optional[str]:
        """
        Composite "ADDRESS|ZIP" key for address-tier matching.

        Returns:
            Key string, or None when either part is missing
        """
        normalized = self.normalize(address)
        zip_norm = self.normalize_zip(zip_code)
        if not normalized or not zip_norm:
            return None
        return f"{normalized}|{zip_norm}"

    def _strip_unit(self, address: str) -> str:
        """Remove a unit designator (APT 4B, # 12) from an uppercased address."""
        match = self.UNIT_PATTERN.search(address)
        if not match:
            return address

        remaining = (address[:match.start()] + ' ' + address[match.end():]).strip()
        return ' '.join(remaining.split())

    @staticmethod
    def normalize_zip(zip_code: Optional[str]) -> Optional[str]:
        """
        Normalize ZIP code to 5 digits.

        Args:
            zip_code: Raw ZIP code (ZIP+4 and numeric values accepted)

        Returns:
            5-digit ZIP code or None
        """
        if zip_code is None:
            return None

        digits = re.sub(r'\D', '', str(zip_code).split('.')[0])

        if len(digits) >= 5:
            return digits[:5]

        return None

    @staticmethod
    def clean_unit_designation(designation: Optional[str]) -> Optional[str]:
        """
        Clean a registry unit designation for display.

        Returns:
            Designation without APT/UNIT/# prefixes, or None for placeholders
        """
        if designation is None:
            return None

        value = designation.strip().upper()
        if value in ('', '-', '0'):
            return None

        value = re.sub(r'^APT\.?\s*', '', value)
        value = re.sub(r'^UNIT\s*', '', value)
        value = re.sub(r'^#\s*', '', value)
        value = value.strip()

        return value or None
