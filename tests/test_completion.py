from app.models.application import Application, deep_merge, merge_application
from app.services.completion import compute_completion, missing_fields, with_completion


def test_empty_application_scores_zero():
    status = compute_completion(Application())

    assert status.overall == 0
    assert status.personal_info == 0


def test_address_counts_once_with_street_and_city():
    app = Application.model_validate({
        "personal_info": {"address": {"street": "12 Elm Street"}},
    })
    assert compute_completion(app).personal_info == 0

    app = merge_application(app, {"personal_info": {"address": {"city": "Austin"}}})
    assert compute_completion(app).personal_info == 17


def test_overall_is_rounded_mean_of_sections():
    app = Application.model_validate({
        "personal_info": {
            "first_name": "Jane", "last_name": "Doe", "date_of_birth": "1990-04-02",
            "phone": "555-123-4567", "email": "jane@example.com",
            "address": {"street": "12 Elm Street", "city": "Austin"},
        },
        "coverage_prefs": {"collision": {"selected": True, "deductible": 500}},
    })

    status = compute_completion(app)

    assert status.personal_info == 100
    assert status.coverage_prefs == 33
    assert status.vehicle_info == 0
    assert status.driving_history == 0
    assert status.overall == 33


def test_with_completion_does_not_mutate():
    app = Application.model_validate({"driving_history": {"years_licensed": 10}})

    scored = with_completion(app)

    assert scored.completion_status.driving_history == 33
    assert app.completion_status.driving_history == 0


def test_missing_fields_lists_what_is_unset():
    app = Application.model_validate({"personal_info": {"first_name": "Jane"}})

    missing = missing_fields(app)

    assert "first name" not in missing
    assert "last name" in missing
    assert "VIN" in missing


def test_deep_merge_skips_blank_values():
    base = {"a": {"b": 1, "c": [1]}, "d": "x"}

    merged = deep_merge(base, {"a": {"b": None, "c": []}, "d": "", "e": 2})

    assert merged == {"a": {"b": 1, "c": [1]}, "d": "x", "e": 2}
    assert base == {"a": {"b": 1, "c": [1]}, "d": "x"}


def test_merge_application_ignores_completion_in_patch():
    app = merge_application(Application(), {"completion_status": {"overall": 99}})

    assert app.completion_status.overall == 0


def test_empty_coverage_blocks_do_not_score():
    app = merge_application(Application(), {
        "coverage_prefs": {"liability_limits": {}, "comprehensive": {}, "collision": {"deductible": None}},
    })

    assert app.coverage_prefs.liability_limits is None
    assert app.coverage_prefs.collision is None
    assert compute_completion(app).coverage_prefs == 0

    validated = Application.model_validate({"coverage_prefs": {"comprehensive": {}, "collision": {}}})
    assert compute_completion(validated).coverage_prefs == 0
    assert "collision coverage" in missing_fields(validated)


def test_deep_merge_skips_empty_dicts():
    merged = deep_merge({"a": {"b": 1}}, {"a": {}, "c": {}, "d": {"e": None}})

    assert merged == {"a": {"b": 1}}


def test_overall_never_decreases_across_patches():
    patches = [
        {"personal_info": {"first_name": "Jane"}},
        {"coverage_prefs": {"liability_limits": {}, "comprehensive": {}, "collision": {}}},
        {"personal_info": {"first_name": None, "last_name": ""}},
        {"vehicle_info": {"year": 2020, "make": "Honda"}},
        {"vehicle_info": {"make": None, "model": "", "vehicles": []}},
        {"coverage_prefs": {"collision": {"selected": True}}},
        {"driving_history": {}},
        {"personal_info": {"address": {"street": "12 Elm Street", "city": "Austin"}}},
        {"personal_info": {"address": {}}, "vehicle_info": {}},
        {"coverage_prefs": {"collision": {"selected": None, "deductible": None}}},
        {"driving_history": {"license_state": "TX", "years_licensed": 8}},
    ]
    app = with_completion(Application())
    scores = [app.completion_status.overall]

    for patch in patches:
        app = with_completion(merge_application(app, patch))
        scores.append(app.completion_status.overall)

    assert scores == sorted(scores)
    assert scores[2] == scores[1]
    assert scores[-1] > scores[0]
