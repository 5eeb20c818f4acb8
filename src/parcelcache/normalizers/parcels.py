"""
Parcel Normalizers

Map ATTOM property objects into ParcelRecord / AddressParcelRecord and pick
the best match for a typed address.

Upstream nesting varies between endpoints: coordinates may live under
``location`` or at the top level, room counts under ``building.rooms`` or
flat, and so on. A record without coordinates is dropped entirely.
"""
from typing import Any, List, Optional, Tuple

from src.parcelcache.models.parcel import AddressParcelRecord, ParcelRecord
from src.parcelcache.normalizers.addresses import address_contains
from src.parcelcache.normalizers.fields import (
    first_non_null,
    first_number,
    first_text,
    to_number,
    to_text,
)

ADDRESS_UNKNOWN = "Address unknown"

# Ordered candidates per address component; the first non-blank one is used
ADDRESS_PARTS = (
    ("address.line1", "address.line2"),
    ("address.locality",),
    ("address.adminarea", "address.adminArea", "address.region"),
    ("address.postal1", "address.postalcode", "address.postalCode"),
)

LATITUDE_PATHS = ("location.latitude", "latitude")
LONGITUDE_PATHS = ("location.longitude", "longitude")
EXTERNAL_ID_PATHS = ("identifier.Id", "identifier.id", "identifier.attomId", "id", "attomId")
PROPERTY_TYPE_PATHS = ("summary.proptype", "summary.propType", "propertyType")
BEDS_PATHS = ("building.rooms.beds", "building.beds", "beds")
BATHS_PATHS = (
    "building.rooms.bathstotal",
    "building.rooms.bathsTotal",
    "building.bathstotal",
    "bathstotal",
    "bathsTotal",
)
SQUARE_FEET_PATHS = (
    "building.size.universalsize",
    "building.size.buildingSize",
    "building.size.buildingsize",
    "building.universalsize",
    "squarefeet",
    "squareFeet",
)
AVM_PATHS = ("avm.amount.value", "avm.value", "avm.amount", "avm")
SALE_AMOUNT_PATHS = (
    "sale.amount.saleAmt",
    "sale.amount.saleamt",
    "sale.saleamt",
    "sale.saleAmt",
)
SALE_DATE_PATHS = (
    "sale.saleSearchDate",
    "sale.salesearchdate",
    "sale.saleTransDate",
    "sale.saletransdate",
)


def extract_property_list(payload: Any) -> List[Any]:
    """
    Pull the property list out of an upstream response.

    Accepts ``{"property": [...]}``, ``{"properties": [...]}``, a bare list
    or a bare single property object.
    """
    if payload is None:
        return []
    items = payload
    if isinstance(payload, dict):
        if payload.get("property") is not None:
            items = payload["property"]
        elif payload.get("properties") is not None:
            items = payload["properties"]
    if isinstance(items, list):
        return items
    return [items]


def format_address(item: dict) -> str:
    """Join the populated address components with ", "."""
    parts = []
    for candidates in ADDRESS_PARTS:
        part = first_text(item, *candidates)
        if part is not None:
            parts.append(part)
    return ", ".join(parts) if parts else ADDRESS_UNKNOWN


def _coordinates(item: dict) -> Optional[Tuple[float, float]]:
    latitude = to_number(first_non_null(item, *LATITUDE_PATHS))
    longitude = to_number(first_non_null(item, *LONGITUDE_PATHS))
    if latitude is None or longitude is None:
        return None
    return float(latitude), float(longitude)


def _external_id(item: dict, index: int) -> str:
    external_id = raw_external_id(item)
    return external_id if external_id is not None else f"p-{index}"


def _parcel_fields(item: Any, index: int) -> Optional[dict]:
    if not isinstance(item, dict):
        return None
    coordinates = _coordinates(item)
    if coordinates is None:
        return None
    latitude, longitude = coordinates
    return {
        "address": format_address(item),
        "latitude": latitude,
        "longitude": longitude,
        "external_id": _external_id(item, index),
        "thumbnail": None,
        "property_type": first_text(item, *PROPERTY_TYPE_PATHS),
        "beds": first_number(item, *BEDS_PATHS),
        "baths": first_number(item, *BATHS_PATHS),
        "square_feet": first_number(item, *SQUARE_FEET_PATHS),
    }


def normalize_parcel(item: Any, index: int = 0) -> Optional[ParcelRecord]:
    """
    Normalize one upstream property into a map pin.

    Args:
        item: Upstream property object
        index: Position in the upstream list, used for the synthetic id

    Returns:
        ParcelRecord, or None when coordinates cannot be resolved
    """
    fields = _parcel_fields(item, index)
    if fields is None:
        return None
    return ParcelRecord(**fields)


def normalize_address_parcel(item: Any, index: int = 0) -> Optional[AddressParcelRecord]:
    """Like normalize_parcel, plus AVM estimate and last sale."""
    fields = _parcel_fields(item, index)
    if fields is None:
        return None
    return AddressParcelRecord(
        **fields,
        estimate=first_number(item, *AVM_PATHS),
        last_sale_price=first_number(item, *SALE_AMOUNT_PATHS),
        last_sale_date=first_text(item, *SALE_DATE_PATHS),
    )


def normalize_parcel_list(items: Any) -> List[ParcelRecord]:
    """Normalize a list (or single object), dropping records without coordinates."""
    if not isinstance(items, list):
        items = [items]
    records = (normalize_parcel(item, index) for index, item in enumerate(items))
    return [record for record in records if record is not None]


def select_best_match(
    payload: Any,
    target_address: Optional[str] = None,
) -> Optional[Tuple[AddressParcelRecord, dict]]:
    """
    Pick the best parcel for an address, keeping the raw upstream item.

    Without a target the first mapped record wins. With one, the first
    record whose folded address contains the folded target wins, falling
    back to the first record: the radius query already limits results to
    the immediate vicinity.

    Returns:
        (record, raw item) or None when no item has coordinates
    """
    candidates = []
    for index, item in enumerate(extract_property_list(payload)):
        record = normalize_address_parcel(item, index)
        if record is not None:
            candidates.append((record, item))

    if not candidates:
        return None
    if not target_address:
        return candidates[0]
    for record, item in candidates:
        if address_contains(record.address, target_address):
            return record, item
    return candidates[0]


def resolve_best_match(
    payload: Any,
    target_address: Optional[str] = None,
) -> Optional[AddressParcelRecord]:
    """Best AddressParcelRecord for an address, or None when nothing maps."""
    match = select_best_match(payload, target_address)
    return match[0] if match else None


def raw_external_id(item: Any) -> Optional[str]:
    """Upstream identifier of an item, or None when only a synthetic id applies."""
    if not isinstance(item, dict):
        return None
    return to_text(first_non_null(item, *EXTERNAL_ID_PATHS))


def find_property(payload: Any, external_id: str) -> Optional[dict]:
    """Raw property item carrying ``external_id``, if the payload has one."""
    for item in extract_property_list(payload):
        if raw_external_id(item) == external_id:
            return item
    return None


def payload_for_property(payload: Any, item: dict) -> dict:
    """
    Narrow a multi-property response to a single property.

    Envelope keys such as ``status`` are kept; the property list becomes
    ``[item]`` so "first property" consumers see the right parcel.
    """
    envelope = {}
    if isinstance(payload, dict):
        envelope = {
            key: value for key, value in payload.items()
            if key not in ("property", "properties")
        }
    envelope["property"] = [item]
    return envelope
