from voicematrix.services.lead_extractor import extract_lead


def test_maps_all_known_fields():
    lead = extract_lead(
        {
            "firstName": "Ana",
            "lastName": "Reyes",
            "email": "ana@example.com",
            "phone": "+15551234567",
            "leadType": "buyer",
            "propertyType": ["condo", "townhouse"],
            "budgetMin": 250000,
            "budgetMax": 400000.5,
            "location": ["Austin"],
            "timeline": "3 months",
            "notes": "Wants a yard",
        }
    )

    assert lead.first_name == "Ana"
    assert lead.last_name == "Reyes"
    assert lead.email == "ana@example.com"
    assert lead.phone == "+15551234567"
    assert lead.lead_type == "buyer"
    assert lead.property_types == ["condo", "townhouse"]
    assert lead.budget_min == 250000.0
    assert lead.budget_max == 400000.5
    assert lead.preferred_locations == ["Austin"]
    assert lead.timeline == "3 months"
    assert lead.notes == "Wants a yard"


def test_wrong_types_become_none():
    lead = extract_lead(
        {
            "firstName": 42,
            "email": ["a@b.c"],
            "budgetMin": "250k",
            "budgetMax": True,
            "propertyType": ["condo", 3],
            "location": "Austin",
            "timeline": None,
        }
    )

    assert lead.first_name is None
    assert lead.email is None
    assert lead.budget_min is None
    assert lead.budget_max is None
    assert lead.property_types is None
    assert lead.preferred_locations is None
    assert lead.timeline is None


def test_lead_type_outside_allow_list_is_none():
    for value in ("landlord", "Buyer", "", 1):
        assert extract_lead({"leadType": value}).lead_type is None

    for value in ("buyer", "seller", "investor", "renter"):
        assert extract_lead({"leadType": value}).lead_type == value


def test_phone_falls_back_to_caller_number():
    lead = extract_lead({"firstName": "Sam"}, fallback_phone="+15550009999")
    assert lead.phone == "+15550009999"

    lead = extract_lead({"phone": "+15551110000"}, fallback_phone="+15550009999")
    assert lead.phone == "+15551110000"


def test_missing_structured_data_means_no_lead():
    assert extract_lead(None) is None
    assert extract_lead(["not", "a", "map"]) is None


def test_empty_structured_data_keeps_caller_number():
    lead = extract_lead({}, fallback_phone="+15550009999")

    assert lead is not None
    assert lead.phone == "+15550009999"
    assert lead.first_name is None
    assert lead.lead_type is None
    assert lead.budget_min is None
    assert lead.notes is None
