"""
Transformers Package

Normalization and row mapping for imported property records.
"""
from src.offerlookup.transformers.normalizer import (
    normalize_address,
    normalize_city,
    normalize_state,
    normalize_zip,
)
from src.offerlookup.transformers.record_mapper import PropertyRecord, map_row

__all__ = [
    "normalize_address",
    "normalize_city",
    "normalize_state",
    "normalize_zip",
    "PropertyRecord",
    "map_row",
]
