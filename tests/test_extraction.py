from app.services.extraction import (
    aggregate,
    extract,
    extract_turn,
    merge_patches,
    normalize_date,
    normalize_phone,
)


def test_name_and_zip():
    patch = extract("My name is Jane Doe and my zip code is 90210")

    assert patch == {
        "personal_info": {
            "first_name": "Jane",
            "last_name": "Doe",
            "address": {"zip_code": "90210"},
        }
    }


def test_contact_details():
    patch = extract("You can reach me at (512) 555-0187 or JANE.DOE@Example.com")

    assert patch["personal_info"]["phone"] == "512-555-0187"
    assert patch["personal_info"]["email"] == "jane.doe@example.com"


def test_marital_status_and_prior_insurer():
    patch = extract("I'm married and we're with State Farm right now")

    assert patch["personal_info"]["marital_status"] == "married"
    assert patch["personal_info"]["previous_insurer"] == "State Farm"
    assert patch["personal_info"]["has_prior_coverage"] is True


def test_first_person_rules_skip_assistant_turns():
    patch = extract("Great, so I'm married to the idea of saving you money with Geico.", role="assistant")

    assert "personal_info" not in patch


def test_vehicle_mentions_are_advisory():
    patch = extract("I drive a 2019 Honda Civic and my wife has a 2021 toyota camry")

    vehicle_info = patch["vehicle_info"]
    assert vehicle_info["mentioned_vehicles"] == [
        {"year": 2019, "make": "Honda", "model": "Civic"},
        {"year": 2021, "make": "Toyota", "model": "Camry"},
    ]
    assert "make" not in vehicle_info
    assert "year" not in vehicle_info


def test_mentions_accumulate_without_duplicates():
    acc = extract_turn({}, "It's a 2019 Honda Civic")
    acc = extract_turn(acc, "Yes the 2019 honda civic, and also a 2015 Ford F-150")
    acc = extract_turn(acc, "Oh and a 2020 Tesla Model")

    assert acc["vehicle_info"]["mentioned_vehicles"] == [
        {"year": 2019, "make": "Honda", "model": "Civic"},
        {"year": 2015, "make": "Ford", "model": "F-150"},
    ]


def test_mileage_and_counts():
    patch = extract("I drive about 12,000 miles a year, two cars, and I've never had an accident")

    assert patch["vehicle_info"]["annual_mileage"] == 12000
    assert patch["vehicle_info"]["num_vehicles"] == 2
    assert patch["driving_history"]["accident_count"] == 0
    assert "current_mileage" not in patch["vehicle_info"]


def test_vin_rejects_invalid_letters():
    assert extract("my VIN is 1HGCM82633A004352")["vehicle_info"]["vin"] == "1HGCM82633A004352"
    assert "vehicle_info" not in extract("my VIN is 1HGCM82633A00435")


def test_insurance_need():
    patch = extract("I'm looking to renew my policy")

    assert patch["coverage_prefs"]["insurance_need"] == "renewal"


def test_empty_text_yields_empty_patch():
    assert extract("") == {}
    assert extract("   ") == {}
    assert extract("Sounds good, thanks!") == {}


def test_later_turns_win_per_field():
    acc = merge_patches({}, {"personal_info": {"first_name": "Jon"}})
    acc = merge_patches(acc, {"personal_info": {"first_name": "John", "last_name": "Smith"}})

    assert acc == {"personal_info": {"first_name": "John", "last_name": "Smith"}}


def test_aggregate_over_turns():
    acc = aggregate([
        ("assistant", "What's your name?"),
        ("user", "My name is Jane Doe"),
        ("assistant", "And your zip code?"),
        ("user", "zip is 73301"),
    ])

    assert acc["personal_info"]["first_name"] == "Jane"
    assert acc["personal_info"]["address"]["zip_code"] == "73301"


def test_normalizers():
    assert normalize_phone("+1 512 555 0187") == "512-555-0187"
    assert normalize_phone("555-0187") is None
    assert normalize_date("04/02/1990") == "1990-04-02"
    assert normalize_date("02/30/1990") is None
