"""
Normalizers Module

Map heterogeneous ATTOM property JSON into stable internal records.
"""
from src.parcelcache.normalizers.addresses import normalize_address_text
from src.parcelcache.normalizers.parcels import (
    extract_property_list,
    normalize_address_parcel,
    normalize_parcel,
    normalize_parcel_list,
    resolve_best_match,
    select_best_match,
)
from src.parcelcache.normalizers.snapshot import normalize_snapshot_sections

__all__ = [
    "normalize_address_text",
    "extract_property_list",
    "normalize_address_parcel",
    "normalize_parcel",
    "normalize_parcel_list",
    "resolve_best_match",
    "select_best_match",
    "normalize_snapshot_sections",
]
