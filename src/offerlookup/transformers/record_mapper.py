"""
Record Mapper

Converts a raw parsed row (CSV or spreadsheet, arbitrary header naming)
into a canonical PropertyRecord ready for dedup comparison.
"""
import math
import re
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

from src.offerlookup.transformers.normalizer import (
    normalize_address,
    normalize_city,
    normalize_state,
    normalize_zip,
)

# Canonical field -> accepted header keys, in priority order.
# Keys are compared after folding (lower-case, alphanumerics only), so
# "propertyAddress", "property_address" and "Property Address" all match.
FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    'first_name': ('firstname',),
    'last_name': ('lastname',),
    'property_address': ('propertyaddress', 'address'),
    'property_city': ('propertycity', 'city'),
    'property_state': ('propertystate', 'state'),
    'property_zip': ('propertyzip', 'zip', 'zipcode'),
    'offer': ('offer',),
}

_HEADER_JUNK = re.compile(r'[^a-z0-9]')
_AMOUNT_JUNK = re.compile(r'[$,\s]')
_ZIP_CODE = re.compile(r'^[0-9]{5}$')

# Two-letter USPS codes, including DC, territories and military mail
US_STATE_CODES = frozenset({
    'AL', 'AK', 'AZ', 'AR', 'CA', 'CO', 'CT', 'DE', 'FL', 'GA',
    'HI', 'ID', 'IL', 'IN', 'IA', 'KS', 'KY', 'LA', 'ME', 'MD',
    'MA', 'MI', 'MN', 'MS', 'MO', 'MT', 'NE', 'NV', 'NH', 'NJ',
    'NM', 'NY', 'NC', 'ND', 'OH', 'OK', 'OR', 'PA', 'RI', 'SC',
    'SD', 'TN', 'TX', 'UT', 'VT', 'VA', 'WA', 'WV', 'WI', 'WY',
    'DC', 'PR', 'VI', 'AA', 'AE', 'AP',
})


class PropertyRecord(BaseModel):
    """
    Canonical property record produced from one input row.

    Construction fails with a ValidationError when the address tuple is
    unusable: empty street or city, an unknown state code, or a ZIP that
    is not exactly 5 digits after normalization.
    """

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    property_address: str = Field(..., min_length=1, max_length=255)
    property_city: str = Field(..., min_length=1, max_length=100)
    property_state: str = Field(..., description="Two-letter state code")
    property_zip: str = Field(..., description="5-digit ZIP code")
    offer: float = Field(0.0, ge=0)
    offer_coerced: bool = Field(
        default=False,
        description="True when a non-empty offer could not be parsed and became 0",
    )
    created_at: datetime
    updated_at: datetime

    @field_validator("property_state")
    @classmethod
    def validate_state(cls, v: str) -> str:
        if v not in US_STATE_CODES:
            raise ValueError(f"Invalid state code: {v!r}")
        return v

    @field_validator("property_zip")
    @classmethod
    def validate_zip(cls, v: str) -> str:
        if not _ZIP_CODE.match(v):
            raise ValueError(f"ZIP code must be 5 digits: {v!r}")
        return v

    @property
    def address_tuple(self) -> Tuple[str, str, str, str]:
        return (self.property_address, self.property_city, self.property_state, self.property_zip)

    def to_model_kwargs(self) -> Dict[str, Any]:
        """Column values for a new Property row."""
        return self.model_dump(exclude={'offer_coerced'})


def fold_header(header: Any) -> str:
    return _HEADER_JUNK.sub('', str(header).lower())


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and not value.strip()


def _pick(row: Mapping[str, Any], aliases: Tuple[str, ...]) -> Any:
    for alias in aliases:
        value = row.get(alias)
        if not _is_blank(value):
            return value
    return None


def _optional_name(value: Any) -> Optional[str]:
    if _is_blank(value):
        return None
    return str(value).strip()


def parse_offer(value: Any) -> Tuple[float, bool]:
    """
    Parse an offer amount.

    Currency symbols, thousands separators and whitespace are ignored.
    Unparsable values become 0.0 instead of raising.

    Args:
        value: Raw offer cell

    Returns:
        Tuple of (offer rounded to cents, coerced flag)
    """
    if _is_blank(value):
        return 0.0, False

    if isinstance(value, bool):
        return 0.0, True

    if isinstance(value, (int, float)):
        amount = float(value)
    else:
        try:
            amount = float(_AMOUNT_JUNK.sub('', str(value)))
        except ValueError:
            return 0.0, True

    if math.isnan(amount) or math.isinf(amount):
        return 0.0, True

    return round(amount, 2), False


def map_row(raw_row: Mapping[Any, Any], now: Optional[datetime] = None) -> PropertyRecord:
    """
    Map a loosely-typed row to a canonical PropertyRecord.

    Args:
        raw_row: Header -> cell value
        now: Timestamp for created_at/updated_at (defaults to current UTC time)

    Returns:
        PropertyRecord

    Raises:
        pydantic.ValidationError: The normalized address is not usable
    """
    row = {fold_header(key): value for key, value in raw_row.items() if key is not None}
    now = now or datetime.now(timezone.utc)

    offer, coerced = parse_offer(_pick(row, FIELD_ALIASES['offer']))

    return PropertyRecord(
        first_name=_optional_name(_pick(row, FIELD_ALIASES['first_name'])),
        last_name=_optional_name(_pick(row, FIELD_ALIASES['last_name'])),
        property_address=normalize_address(_pick(row, FIELD_ALIASES['property_address'])),
        property_city=normalize_city(_pick(row, FIELD_ALIASES['property_city'])),
        property_state=normalize_state(_pick(row, FIELD_ALIASES['property_state'])),
        property_zip=normalize_zip(_pick(row, FIELD_ALIASES['property_zip'])),
        offer=offer,
        offer_coerced=coerced,
        created_at=now,
        updated_at=now,
    )
