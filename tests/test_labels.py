from storeinsight.map.aliases import (
    CONTRA_KEYS,
    TOTAL_KEYS,
    canonicalize,
    destination_labels,
    is_contra,
    is_total,
    normalize_label,
)
from storeinsight.map.fuzzy import (
    auto_map_required_fields,
    detect_facility_period_from_filename,
    detect_vendor,
    similarity,
)


def test_normalize_label_keeps_parenthesized_qualifiers():
    assert normalize_label("Current Management Fees (5.25%)") == "current management fees (5.25%)"
    assert normalize_label("Repairs & Maintenance") == "repairs and maintenance"
    assert normalize_label("  Tenant Income - Admin Fees ") == "tenant income admin fees"


def test_canonicalize_known_and_unknown():
    assert canonicalize("Bad Debt") == ("Bad Debt/Rental Refunds", "bad debt")
    assert canonicalize("Rental Income")[0] == "Rental Income (1% monthly increase)"
    assert canonicalize("Mystery Line") == ("Mystery Line", None)


def test_contra_and_total_keys():
    assert CONTRA_KEYS == {"Discounts", "Bad Debt/Rental Refunds"}
    assert TOTAL_KEYS == {"Total Operating Income", "Total Operating Expense", "Net Operating Income"}
    assert is_contra("Discounts Given")
    assert is_total("Total Income")
    assert not is_total("Rental Income")


def test_destination_labels_for_legacy_key():
    assert destination_labels("Bad Debt")[0] == "Bad Debt/Rental Refunds"
    assert destination_labels("Unmapped") == ["Unmapped"]


def test_similarity_bounds():
    assert similarity("Total Operating Income", "total operating income") == 1.0
    assert similarity("", "anything") == 0.0
    assert 0.0 <= similarity("Facility", "Gross Potential Income") < 0.88


def test_one_header_cannot_satisfy_two_fields():
    result = auto_map_required_fields(
        ["Total Rev"], required=["Total Operating Income", "Total Operating Expense"]
    )
    assert result.mapping == {"Total Operating Income": "Total Rev"}
    assert result.unresolved == ["Total Operating Expense"]
    assert result.suggestions["Total Operating Expense"].header == "Total Rev"


def test_low_scores_are_deferred_to_the_user():
    result = auto_map_required_fields(
        ["Store", "Month"], required=["Facility", "Period"], scorer=lambda a, b: 0.5
    )
    assert result.mapping == {}
    assert result.unresolved == ["Facility", "Period"]
    assert result.suggestions["Facility"].score == 0.5
    assert result.to_dict()["suggestions"]["Period"] == {"header": "Store", "score": 0.5}


def test_exact_headers_map():
    headers = ["Facility", "Period", "Total Operating Income", "Total Operating Expense"]
    result = auto_map_required_fields(headers, required=headers)
    assert result.mapping == {h: h for h in headers}
    assert result.unresolved == []


def test_vendor_and_filename_hints():
    assert detect_vendor(["Veritec Export", "Amount"]) == "Veritec"
    assert detect_vendor(["A", "B"], "yardi_oct.xlsx") == "Yardi"
    assert detect_vendor(["A", "B"]) == "Unknown"
    assert detect_facility_period_from_filename("Midtown_Oct_2025.xlsx") == ("Midtown", "Oct 2025")
    assert detect_facility_period_from_filename("report.xlsx") == (None, None)
