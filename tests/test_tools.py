import json

import pytest

from app.tools import insurance
from app.tools.registry import (
    filter_arguments,
    get_tool_category,
    get_tool_handler,
    get_tool_names,
    get_tool_risk,
    get_tools_for_realtime,
)


def test_registry_exposes_realtime_schemas():
    tools = {t["name"]: t for t in get_tools_for_realtime()}

    assert "collect_vehicle_year" in tools
    assert tools["collect_vehicle_year"]["type"] == "function"
    assert tools["collect_vehicle_year"]["parameters"]["required"] == ["vehicle_number", "year"]
    assert len(get_tool_names()) == len(set(get_tool_names()))
    assert get_tool_handler("validate_zipcode") is insurance.validate_zipcode
    assert get_tool_handler("book_flight") is None


def test_filter_arguments_drops_undeclared_keys():
    filtered = filter_arguments("collect_personal_info", {"first_name": "Jane", "sessions": "x", "session_id": "y"})

    assert filtered == {"first_name": "Jane"}
    assert filter_arguments("book_flight", {"a": 1}) == {}


def test_tool_risk_and_category():
    assert get_tool_risk("collect_personal_info") == "write"
    assert get_tool_risk("validate_zipcode") == "external"
    assert get_tool_risk("validate_and_summarize") == "read"
    assert get_tool_category("collect_vehicle_year") == "vehicle"
    assert get_tool_risk("book_flight") is None
    assert get_tool_category("book_flight") is None


@pytest.mark.asyncio
async def test_collect_personal_info_nests_address(sessions, vehicles):
    session = sessions.create_session()

    result = json.loads(await insurance.collect_personal_info(
        session_id=session.id, sessions=sessions, vehicles=vehicles,
        first_name="Jane", last_name="Doe", city="Austin", state="tx",
    ))

    assert result["success"] is True
    assert result["updated"] == ["address", "first_name", "last_name"]
    assert session.data.personal_info.address.state == "TX"
    entry = session.conversation_history[-1]
    assert entry.role.value == "system"
    assert entry.metadata["tool"] == "collect_personal_info"


@pytest.mark.asyncio
async def test_collect_personal_info_rejects_bad_values(sessions, vehicles):
    session = sessions.create_session()

    empty = json.loads(await insurance.collect_personal_info(session_id=session.id, sessions=sessions))
    invalid = json.loads(await insurance.collect_personal_info(
        session_id=session.id, sessions=sessions, first_name="Jane", zip_code="123",
    ))

    assert empty == {"success": False, "error": "No personal information provided."}
    assert invalid["success"] is False
    assert session.data.personal_info.first_name is None
    assert session.conversation_history == []


@pytest.mark.asyncio
async def test_collect_coverage_preferences(sessions):
    session = sessions.create_session()

    result = json.loads(await insurance.collect_coverage_preferences(
        session_id=session.id, sessions=sessions,
        bodily_injury="100/300", property_damage="100", collision=True, collision_deductible=500,
    ))

    prefs = session.data.coverage_prefs
    assert result["success"] is True
    assert prefs.liability_limits.bodily_injury == "100/300"
    assert prefs.collision.selected is True
    assert prefs.collision.deductible == 500
    assert prefs.comprehensive is None


@pytest.mark.asyncio
async def test_collect_driving_history_counts_incidents(sessions):
    session = sessions.create_session()

    await insurance.collect_driving_history(
        session_id=session.id, sessions=sessions,
        license_state="CA", years_licensed=12,
        accidents=[{"date": "2024-02-01", "at_fault": False}],
        violations=[],
    )

    history = session.data.driving_history
    assert history.years_licensed == 12
    assert history.accident_count == 1
    assert history.violation_count == 0


@pytest.mark.asyncio
async def test_ask_insurance_needs(sessions):
    session = sessions.create_session()

    switching = json.loads(await insurance.ask_insurance_needs(
        session_id=session.id, sessions=sessions, need_type="lowering_premium",
        current_insurer="State Farm", current_premium=1450,
    ))
    new = json.loads(await insurance.ask_insurance_needs(session_id=session.id, sessions=sessions, need_type="new"))

    assert switching["next_step"] == "collect_vehicle_year"
    assert new["next_step"] == "collect_vehicle_year"
    assert session.data.personal_info.previous_insurer == "State Farm"
    assert session.data.personal_info.has_prior_coverage is True
    assert session.data.coverage_prefs.current_premium == 1450


@pytest.mark.asyncio
async def test_vehicle_step_tools(sessions, vehicles):
    session = sessions.create_session()

    year = json.loads(await insurance.collect_vehicle_year(session_id=session.id, vehicles=vehicles, vehicle_number=1, year=2019))
    make = json.loads(await insurance.collect_vehicle_make(session_id=session.id, vehicles=vehicles, vehicle_number=1, make="Tesla"))

    assert year["success"] is True
    assert make["success"] is False
    assert make["available_options"] == ["Honda", "Toyota"]


@pytest.mark.asyncio
async def test_validate_zipcode(sessions, vehicles):
    session = sessions.create_session()

    bad = json.loads(await insurance.validate_zipcode(session_id=session.id, sessions=sessions, vehicles=vehicles, zip_code="00000"))
    good = json.loads(await insurance.validate_zipcode(session_id=session.id, sessions=sessions, vehicles=vehicles, zip_code="90210"))

    assert bad["success"] is False
    assert good == {"success": True, "zip_code": "90210"}
    assert session.data.personal_info.address.zip_code == "90210"


@pytest.mark.asyncio
async def test_get_vehicle_makes(vehicles):
    found = json.loads(await insurance.get_vehicle_makes(vehicles=vehicles, year=2021))
    too_old = json.loads(await insurance.get_vehicle_makes(vehicles=vehicles, year=1950))

    assert found["makes"] == ["Ford", "Honda", "Toyota"]
    assert found["count"] == 3
    assert too_old["success"] is False


@pytest.mark.asyncio
async def test_validate_and_summarize(sessions, clock):
    session = sessions.create_session()
    sessions.update_session_data(session.id, {"personal_info": {"first_name": "Jane"}})

    summary = json.loads(await insurance.validate_and_summarize(session_id=session.id, sessions=sessions))

    assert summary["ready_for_quote"] is False
    assert "first name" not in summary["missing_fields"]
    assert "last name" in summary["missing_fields"]

    clock.advance(minutes=5)
    expired = json.loads(await insurance.validate_and_summarize(session_id=session.id, sessions=sessions))
    assert expired == {"success": False, "error": "This session has expired."}
