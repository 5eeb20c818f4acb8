"""
Snapshot Section Normalizer

Decomposes a full ATTOM snapshot into seven independent sections for the
property detail page:

    physical, ownership, mortgage, sales_history, valuation, tax, distress

Each section is None when none of its candidate fields are present, so
callers can decide per section whether to render it. Numeric fields go
through strict finite-number coercion, and list-valued fields are
normalized element-wise and become None when nothing survives.
"""
import json
from typing import Any, Callable, Dict, List, Optional

from src.parcelcache.normalizers.fields import (
    all_empty,
    as_list,
    dicts,
    first_dict,
    first_non_null,
    first_number,
    first_text,
    number_or_text,
    to_text,
)
from src.parcelcache.normalizers.parcels import extract_property_list

SECTION_NAMES = (
    "physical",
    "ownership",
    "mortgage",
    "sales_history",
    "valuation",
    "tax",
    "distress",
)


def first_property(payload: Any) -> Optional[dict]:
    """First property object in a snapshot payload."""
    items = extract_property_list(payload)
    if not items or not isinstance(items[0], dict):
        return None
    return items[0]


def _or_none(entries: List[dict]) -> Optional[List[dict]]:
    return entries if entries else None


def _first_in(containers: List[dict], *keys: str) -> Any:
    for container in containers:
        value = first_non_null(container, *keys)
        if value is not None:
            return value
    return None


def _first_number_in(containers: List[dict], *keys: str) -> Optional[float]:
    for container in containers:
        number = first_number(container, *keys)
        if number is not None:
            return number
    return None


def normalize_physical(p: dict) -> Optional[dict]:
    """A) Physical characteristics."""
    year_paths = ("building.yearBuilt", "summary.yearbuilt", "summary.yearBuilt", "yearbuilt", "yearBuilt")
    section = {
        "property_type": first_text(p, "summary.proptype", "summary.propType", "propertyType", "proptype"),
        "living_area_sqft": first_number(
            p,
            "building.size.universalsize",
            "building.size.universalSize",
            "building.size.buildingSize",
            "building.size.livingsize",
            "squarefeet",
            "squareFeet",
        ),
        "lot_size_sqft": first_number(p, "lot.lotSize1", "lot.lotsize1", "lot.size", "lotSizeSqft", "lotSize"),
        "year_built": number_or_text(p, *year_paths),
        "beds": first_number(p, "building.rooms.beds", "building.beds", "beds"),
        "baths": first_number(
            p,
            "building.rooms.bathstotal",
            "building.rooms.bathsTotal",
            "bathstotal",
            "bathsTotal",
            "baths",
        ),
        "construction_type": first_text(
            p,
            "building.construction.constructiontype",
            "building.constructionType",
            "building.constructiontype",
            "constructionType",
        ),
        "stories": first_number(p, "building.summary.levels", "building.stories", "stories"),
    }
    if all_empty(*section.values()):
        return None
    return section


def _owner_names(owner: dict) -> Optional[List[str]]:
    names = []
    raw = first_non_null(owner, "owner", "name", "ownerName")
    for entry in as_list(raw):
        if isinstance(entry, dict):
            names.append(first_text(entry, "name", "fullName", "fullname"))
        else:
            names.append(to_text(entry))
    for slot in ("owner1", "owner2", "owner3", "owner4"):
        names.append(first_text(owner, f"{slot}.fullname", f"{slot}.fullName", f"{slot}.lastname"))

    unique = []
    for name in names:
        if name and name not in unique:
            unique.append(name)
    return unique or None


def _chain_entry(entry: dict) -> dict:
    return {
        "seller": first_text(entry, "seller", "grantor"),
        "buyer": first_text(entry, "buyer", "grantee"),
        "sale_date": first_text(entry, "saleDate", "saleTransDate", "recordingDate"),
        "price": first_number(entry, "saleAmt", "saleamt", "price", "amount.saleamt"),
        "deed_type": first_text(entry, "deedType", "deedtype"),
        "recording_date": first_text(entry, "recordingDate", "recordingdate"),
    }


def normalize_ownership(p: dict) -> Optional[dict]:
    """B) Ownership and deed events."""
    owner = first_dict(p, "owner", "ownership")
    sale = first_dict(p, "sale")

    chain = [
        entry for entry in map(_chain_entry, dicts(as_list(first_non_null(p, "ownershipChain", "sales", "saleHistory"))))
        if entry["seller"] or entry["buyer"] or entry["sale_date"] or entry["price"] is not None
    ]
    section = {
        "current_owner_names": _owner_names(owner),
        "last_transfer_date": first_text(
            sale,
            "saleSearchDate",
            "salesearchdate",
            "saleTransDate",
            "saletransdate",
            "recordingDate",
            "recordingdate",
        ),
        "last_deed_type": first_text(sale, "deedType", "deedtype", "type"),
        "last_recording_date": first_text(sale, "recordingDate", "recordingdate", "documentDate", "documentdate"),
        "last_sale_price": first_number(sale, "amount.saleAmt", "amount.saleamt", "saleAmt", "saleamt"),
        "ownership_chain": _or_none(chain),
    }
    if all_empty(*section.values()):
        return None
    return section


def _loans(p: dict) -> List[dict]:
    raw = first_non_null(p, "mortgage", "loan", "mortgages", "loans", "assessment.mortgage")
    loans = []
    for loan in dicts(as_list(raw)):
        # expanded-profile shape nests concurrent loans by position
        nested = [loan.get(key) for key in ("FirstConcurrent", "SecondConcurrent")]
        nested = [entry for entry in nested if isinstance(entry, dict) and entry]
        loans.extend(nested or [loan])
    return loans


def _lender_name(entry: dict) -> Optional[str]:
    lender = entry.get("lender")
    if isinstance(lender, dict):
        name = first_text(lender, "companyname", "companyName", "lastname", "fullname")
        if name:
            return name
    return first_text(entry, "lenderName", "lendername", "lender", "mortgageCompany", "lenderLastName")


def normalize_mortgage(p: dict) -> Optional[dict]:
    """C) Mortgage and financing."""
    active = []
    for loan in _loans(p):
        entry = {
            "original_loan_amount": first_number(loan, "originalLoanAmount", "originalloanamount", "amount", "loanAmount"),
            "lender_name": _lender_name(loan),
            "loan_type": first_text(loan, "loanType", "loantype", "loantypecode", "loanTypeCode", "type"),
            "interest_rate": number_or_text(loan, "interestRate", "interestrate", "rate"),
            "recording_date": first_text(loan, "recordingDate", "recordingdate", "date"),
        }
        if entry["original_loan_amount"] is not None or entry["lender_name"] or entry["loan_type"]:
            active.append(entry)

    refinances = []
    for event in dicts(as_list(first_non_null(p, "refinance", "refinanceEvents", "refinances"))):
        entry = {
            "date": first_text(event, "date", "recordingDate", "recordingdate"),
            "original_loan_amount": first_number(event, "originalLoanAmount", "amount"),
            "lender_name": _lender_name(event),
        }
        if entry["date"] or entry["original_loan_amount"] is not None:
            refinances.append(entry)

    secondaries = []
    for lien in dicts(as_list(first_non_null(p, "secondaryLiens", "heloc", "helocs", "secondaryLiensOrHelocs"))):
        entry = {
            "amount": first_number(lien, "amount", "originalLoanAmount"),
            "lender_name": _lender_name(lien),
            "type": first_text(lien, "type", "loanType"),
            "recording_date": first_text(lien, "recordingDate", "recordingdate"),
        }
        if entry["amount"] is not None or entry["lender_name"]:
            secondaries.append(entry)

    if not (active or refinances or secondaries):
        return None
    return {
        "active_mortgages": _or_none(active),
        "refinance_events": _or_none(refinances),
        "secondary_liens_or_helocs": _or_none(secondaries),
    }


def _flip_signal(sale: dict) -> Optional[str]:
    signal = first_text(sale, "flipSignal", "flipsignal")
    if signal:
        return signal
    flip = sale.get("flip")
    return "Y" if flip is True or flip == "Y" else None


def normalize_sales_history(p: dict) -> Optional[dict]:
    """D) Sales history."""
    raw = first_non_null(p, "sales", "saleHistory", "salesHistory", "salehistory")
    if raw is None and isinstance(p.get("sale"), dict):
        raw = [p["sale"]]

    history = []
    for sale in dicts(as_list(raw)):
        entry = {
            "sale_date": first_text(sale, "saleSearchDate", "saleTransDate", "recordingDate", "date", "saleDate"),
            "sale_price": first_number(sale, "saleAmt", "saleamt", "amount.saleAmt", "amount.saleamt", "amount", "price"),
            "arms_length_indicator": first_text(sale, "armsLength", "armslength", "armsLengthIndicator"),
            "transaction_type": first_text(
                sale, "transactionType", "transactiontype", "amount.saletranstype", "type"
            ),
            "flip_signal": _flip_signal(sale),
        }
        if entry["sale_date"] or entry["sale_price"] is not None:
            history.append(entry)

    if not history:
        return None
    return {"sales_history": history}


def normalize_valuation(p: dict) -> Optional[dict]:
    """E) Valuation and equity."""
    section = {
        "avm_value": first_number(
            p,
            "avm.amount.value",
            "avm.amount.amount",
            "avm.value",
            "avm.amount",
            "valuation.amount.value",
            "valuation.value",
            "valuation.amount",
            "estimate",
        ),
        "estimated_equity": first_number(
            p,
            "equity.amount",
            "equity.value",
            "equity",
            "estimatedEquity.amount",
            "estimatedEquity.value",
            "estimatedEquity",
        ),
        "estimated_ltv": number_or_text(p, "estimatedLTV", "estimatedltv", "ltv"),
        "price_trend_indicators": first_text(p, "priceTrend", "priceTrendIndicators", "trend"),
        "confidence_score": number_or_text(
            p, "confidenceScore", "confidence", "avm.confidence", "avm.amount.scr"
        ),
    }
    if all_empty(*section.values()):
        return None
    return section


def _exemption_label(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        label = first_text(value, "type", "name")
        return label if label else json.dumps(value, sort_keys=True, default=str)
    return to_text(value)


def normalize_tax(p: dict) -> Optional[dict]:
    """F) Tax and assessment."""
    containers = [
        first_dict(p, "tax"),
        first_dict(p, "assessment.tax"),
        first_dict(p, "assessment.assessed"),
        first_dict(p, "assessment.market"),
        first_dict(p, "assessment"),
        first_dict(p, "assessed"),
    ]
    containers = [container for container in containers if container]

    land = _first_number_in(containers, "assessedValueLand", "assessedvalueland", "assdLandValue", "assdlandvalue", "landValue", "land")
    improvement = _first_number_in(
        containers,
        "assessedValueImprovement",
        "assessedvalueimprovement",
        "assdImprValue",
        "assdimprvalue",
        "improvementValue",
        "improvement",
    )
    total = _first_number_in(containers, "assessedValueTotal", "assessedvaluetotal", "assdTtlValue", "assdttlvalue", "assessedValue", "total")
    if total is None and (land is not None or improvement is not None):
        total = (land or 0) + (improvement or 0)

    tax_year = _first_number_in(containers, "taxYear", "taxyear", "year")
    if tax_year is None:
        tax_year = to_text(_first_in(containers, "taxYear", "taxyear", "year"))

    tax_amount = _first_number_in(containers, "taxAmount", "taxamount", "taxAmt", "taxamt", "amount")
    if tax_amount is None:
        tax_amount = first_number(p, "propertyTax")

    exemptions = [
        label for label in map(_exemption_label, as_list(_first_in(containers, "exemptions", "exemption")))
        if label
    ]

    section = {
        "assessed_value_land": land,
        "assessed_value_improvement": improvement,
        "assessed_value_total": total,
        "tax_market_value": _first_number_in(
            containers, "taxMarketValue", "taxmarketvalue", "mktTtlValue", "mktttlvalue", "marketValue", "market"
        ),
        "tax_year": tax_year,
        "tax_amount": tax_amount,
        "exemptions": _or_none(exemptions),
    }
    if all_empty(*section.values()):
        return None
    return section


FILING_FIELDS = ("recording_date", "auction_date", "stage", "document_type", "default_amount", "judgment_amount", "estimated_value")


def _filing(entry: dict) -> dict:
    return {
        "recording_date": first_text(entry, "recordingDate", "recordingdate", "filingDate"),
        "auction_date": first_text(entry, "auctionDate", "auctiondate"),
        "stage": first_text(entry, "stage", "foreclosureStatus", "status"),
        "document_type": first_text(entry, "documentType", "documenttype"),
        "default_amount": first_number(entry, "defaultAmount", "defaultamount"),
        "judgment_amount": first_number(entry, "judgmentAmount", "judgmentamount"),
        "estimated_value": first_number(entry, "estimatedValue", "estimatedvalue"),
    }


def normalize_distress(p: dict) -> Optional[dict]:
    """G) Distress and default indicators."""
    distress = first_dict(p, "distress", "foreclosure", "default")

    raw_filings = first_non_null(distress, "foreclosureFilings", "foreclosures", "filings")
    if raw_filings is None:
        raw_filings = p.get("foreclosureFilings")
    if raw_filings is None and distress is p.get("foreclosure"):
        # a bare foreclosure object is itself the single filing
        raw_filings = distress
    filings = [
        filing for filing in map(_filing, dicts(as_list(raw_filings)))
        if any(filing[field] is not None for field in FILING_FIELDS)
    ]

    pre_foreclosure = first_non_null(distress, "preForeclosure", "preforeclosure")
    if pre_foreclosure is None:
        pre_foreclosure = p.get("preForeclosure")
    if isinstance(pre_foreclosure, dict):
        pre_foreclosure_flag: Any = pre_foreclosure
    elif pre_foreclosure is True or pre_foreclosure == "Y":
        pre_foreclosure_flag = True
    else:
        pre_foreclosure_flag = None

    auctions = as_list(first_non_null(distress, "auctionNotices", "auctions"))
    if not auctions:
        auctions = as_list(p.get("auctionNotices"))

    reo_status = first_text(distress, "reoStatus", "reostatus") or first_text(p, "reoStatus", "reo")

    if not filings and pre_foreclosure_flag is None and not auctions and not reo_status:
        return None
    return {
        "foreclosure_filings": _or_none(filings),
        "pre_foreclosure": pre_foreclosure_flag,
        "auction_notices": _or_none(auctions),
        "reo_status": reo_status,
    }


SECTION_NORMALIZERS: Dict[str, Callable[[dict], Optional[dict]]] = {
    "physical": normalize_physical,
    "ownership": normalize_ownership,
    "mortgage": normalize_mortgage,
    "sales_history": normalize_sales_history,
    "valuation": normalize_valuation,
    "tax": normalize_tax,
    "distress": normalize_distress,
}


def normalize_snapshot_sections(payload: Any) -> Dict[str, Optional[dict]]:
    """
    Normalize the first property of a snapshot payload into seven sections.

    Args:
        payload: Raw snapshot response (e.g. ``{"property": [...]}``)

    Returns:
        Dict keyed by section name; absent sections are None
    """
    p = first_property(payload)
    if p is None:
        return {name: None for name in SECTION_NAMES}
    return {name: normalize(p) for name, normalize in SECTION_NORMALIZERS.items()}
