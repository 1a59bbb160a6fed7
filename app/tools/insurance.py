"""
Insurance intake tools. The voice agent calls these to record what the caller
has confirmed and to validate vehicles and zip codes against the reference lookup.

Every handler returns a JSON string; the engine reads it back to the agent.
"""

import json
import logging
from typing import Optional

from ..core.errors import CatalogUnavailable, InvalidPatch, SessionNotFound
from ..models.session import EntryRole
from ..services.completion import missing_fields
from ..services.vehicle_catalog import validate_year
from .registry import ToolRisk, tool

logger = logging.getLogger(__name__)


def _ok(**data) -> str:
    return json.dumps({"success": True, **data}, default=str)


def _fail(error: str, **data) -> str:
    return json.dumps({"success": False, "error": error, **data}, default=str)


def _drop_empty(d: dict) -> dict:
    return {k: v for k, v in d.items() if v is not None and v != "" and v != {}}


def _apply(sessions, session_id: str, section: str, data: dict, tool_name: str, label: str) -> str:
    """Merge a tool's fields into one application section and log it in the transcript."""
    data = _drop_empty(data)
    if not data:
        return _fail(f"No {label.lower()} provided.")
    try:
        session = sessions.update_session_data(session_id, {section: data})
    except InvalidPatch as e:
        return _fail(f"Some {label.lower()} values were not valid: {e}")
    except SessionNotFound:
        return _fail("This session has expired.")

    sessions.add_conversation_item(
        session_id,
        EntryRole.SYSTEM,
        f"{label} updated: {', '.join(sorted(data))}",
        {"event": "data_updated", "tool": tool_name, "data": data},
    )
    return _ok(
        updated=sorted(data),
        completion=session.data.completion_status.model_dump(),
    )


# ── Application sections ─────────────────────────────────────────────

@tool(
    name="collect_personal_info",
    description=(
        "Record personal details the caller has stated or confirmed. "
        "Pass only the fields you actually heard; omitted fields are left as they are. "
        "\n\nReturns: which fields were saved and the current completion percentages."
    ),
    parameters={
        "properties": {
            "first_name": {"type": "string"},
            "last_name": {"type": "string"},
            "date_of_birth": {"type": "string", "description": "YYYY-MM-DD"},
            "street": {"type": "string"},
            "city": {"type": "string"},
            "state": {"type": "string", "description": "Two-letter state code"},
            "zip_code": {"type": "string", "description": "5 digits or ZIP+4"},
            "phone": {"type": "string"},
            "email": {"type": "string"},
            "gender": {"type": "string", "enum": ["male", "female", "non-binary"]},
            "marital_status": {"type": "string", "enum": ["single", "married", "divorced", "widowed"]},
            "home_ownership": {"type": "string", "enum": ["own", "rent"]},
            "military_service": {"type": "boolean"},
            "occupation": {"type": "string"},
            "previous_insurer": {"type": "string"},
            "has_prior_coverage": {"type": "boolean"},
        },
        "required": [],
    },
    risk=ToolRisk.WRITE,
    category="application",
)
async def collect_personal_info(session_id: str = "", sessions=None, vehicles=None, **kwargs) -> str:
    address = _drop_empty({k: kwargs.pop(k, None) for k in ("street", "city", "state", "zip_code")})
    data = dict(kwargs)
    if address:
        data["address"] = address
    return _apply(sessions, session_id, "personal_info", data, "collect_personal_info", "Personal information")


@tool(
    name="collect_vehicle_info",
    description=(
        "Record vehicle usage details: VIN, mileage, ownership, parking and primary use. "
        "Do NOT use this for year/make/model/trim; use the collect_vehicle_year/make/model/trim "
        "tools, which validate against the vehicle catalogue."
    ),
    parameters={
        "properties": {
            "vin": {"type": "string", "description": "17-character VIN"},
            "current_mileage": {"type": "integer"},
            "annual_mileage": {"type": "integer", "description": "Miles driven per year, max 100000"},
            "ownership_status": {"type": "string", "enum": ["owned", "leased", "financed"]},
            "parking_location": {"type": "string", "enum": ["garage", "driveway", "street", "lot"]},
            "primary_use": {"type": "string", "enum": ["commuting", "pleasure", "business"]},
            "safety_features": {"type": "array", "items": {"type": "string"}},
        },
        "required": [],
    },
    risk=ToolRisk.WRITE,
    category="application",
)
async def collect_vehicle_info(session_id: str = "", sessions=None, vehicles=None, **kwargs) -> str:
    if kwargs.get("vin"):
        kwargs["vin"] = str(kwargs["vin"]).replace(" ", "").upper()
    return _apply(sessions, session_id, "vehicle_info", kwargs, "collect_vehicle_info", "Vehicle information")


@tool(
    name="collect_coverage_preferences",
    description=(
        "Record the coverage the caller wants: liability limits (e.g. '100/300' bodily injury, "
        "'100' property damage), comprehensive and collision with deductibles, add-ons, start date."
    ),
    parameters={
        "properties": {
            "bodily_injury": {"type": "string"},
            "property_damage": {"type": "string"},
            "comprehensive": {"type": "boolean"},
            "comprehensive_deductible": {"type": "integer"},
            "collision": {"type": "boolean"},
            "collision_deductible": {"type": "integer"},
            "rental": {"type": "boolean"},
            "roadside": {"type": "boolean"},
            "gap_coverage": {"type": "boolean"},
            "policy_start_date": {"type": "string", "description": "YYYY-MM-DD"},
        },
        "required": [],
    },
    risk=ToolRisk.WRITE,
    category="application",
)
async def collect_coverage_preferences(session_id: str = "", sessions=None, vehicles=None, **kwargs) -> str:
    data = {
        "liability_limits": _drop_empty({
            "bodily_injury": kwargs.get("bodily_injury"),
            "property_damage": kwargs.get("property_damage"),
        }),
        "comprehensive": _drop_empty({
            "selected": kwargs.get("comprehensive"),
            "deductible": kwargs.get("comprehensive_deductible"),
        }),
        "collision": _drop_empty({
            "selected": kwargs.get("collision"),
            "deductible": kwargs.get("collision_deductible"),
        }),
        "additional_coverage": _drop_empty({
            "rental": kwargs.get("rental"),
            "roadside": kwargs.get("roadside"),
            "gap_coverage": kwargs.get("gap_coverage"),
        }),
        "policy_start_date": kwargs.get("policy_start_date"),
    }
    return _apply(sessions, session_id, "coverage_prefs", data, "collect_coverage_preferences", "Coverage preferences")


_INCIDENT_SCHEMA = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "date": {"type": "string"},
            "type": {"type": "string"},
            "description": {"type": "string"},
            "at_fault": {"type": "boolean"},
            "amount": {"type": "number"},
        },
    },
}


@tool(
    name="collect_driving_history",
    description=(
        "Record the driver's license and history: license number/state, years licensed, "
        "accidents, violations and claims in the last 5 years, defensive driving course."
    ),
    parameters={
        "properties": {
            "license_number": {"type": "string"},
            "license_state": {"type": "string"},
            "years_licensed": {"type": "integer"},
            "accidents": _INCIDENT_SCHEMA,
            "violations": _INCIDENT_SCHEMA,
            "claims": _INCIDENT_SCHEMA,
            "defensive_driving": {"type": "boolean"},
        },
        "required": [],
    },
    risk=ToolRisk.WRITE,
    category="application",
)
async def collect_driving_history(session_id: str = "", sessions=None, vehicles=None, **kwargs) -> str:
    data = dict(kwargs)
    for key, count_key in (("accidents", "accident_count"), ("violations", "violation_count"), ("claims", "claim_count")):
        if isinstance(data.get(key), list):
            data[count_key] = len(data[key])
    return _apply(sessions, session_id, "driving_history", data, "collect_driving_history", "Driving history")


@tool(
    name="ask_insurance_needs",
    description=(
        "Record why the caller wants a quote. Use at the start of the call."
        "\n\nneed_type: new | renewal | adding_car | removing_car | lowering_premium | other"
    ),
    parameters={
        "properties": {
            "need_type": {
                "type": "string",
                "enum": ["new", "renewal", "adding_car", "removing_car", "lowering_premium", "other"],
            },
            "current_insurer": {"type": "string"},
            "current_premium": {"type": "number"},
        },
        "required": ["need_type"],
    },
    risk=ToolRisk.WRITE,
    category="application",
)
async def ask_insurance_needs(
    session_id: str = "",
    sessions=None,
    need_type: str = "other",
    current_insurer: Optional[str] = None,
    current_premium: Optional[float] = None,
    **kwargs,
) -> str:
    try:
        sessions.update_session_data(session_id, {
            "coverage_prefs": {"insurance_need": need_type, "current_premium": current_premium},
            "personal_info": {
                "previous_insurer": current_insurer,
                "has_prior_coverage": True if current_insurer else None,
            },
        })
    except InvalidPatch as e:
        return _fail(f"Invalid insurance need: {e}")
    except SessionNotFound:
        return _fail("This session has expired.")

    next_step = "ask_current_insurer" if not current_insurer and need_type != "new" else "collect_vehicle_year"
    return _ok(need_type=need_type, next_step=next_step)


# ── Vehicles (stepwise, validated) ───────────────────────────────────

def _vehicle_params(field: str, description: str) -> dict:
    return {
        "properties": {
            "vehicle_number": {"type": "integer", "enum": [1, 2], "description": "Which vehicle (1 or 2)"},
            field: {"type": "integer" if field == "year" else "string", "description": description},
        },
        "required": ["vehicle_number", field],
    }


async def _vehicle_step(vehicles, session_id: str, vehicle_number, step: str, value) -> str:
    try:
        result = await vehicles.collect(session_id, int(vehicle_number or 1), step, value)
    except SessionNotFound:
        return _fail("This session has expired.")
    return json.dumps(result.to_dict(), default=str)


@tool(
    name="collect_vehicle_year",
    description="Step 1 of 4 for a vehicle. Validates the model year (1987 or newer).",
    parameters=_vehicle_params("year", "Four-digit model year"),
    risk=ToolRisk.WRITE,
    category="vehicle",
)
async def collect_vehicle_year(session_id: str = "", vehicles=None, vehicle_number: int = 1, year=None, **kwargs) -> str:
    return await _vehicle_step(vehicles, session_id, vehicle_number, "year", year)


@tool(
    name="collect_vehicle_make",
    description=(
        "Step 2 of 4. Validates the make against the catalogue for the recorded year. "
        "Fails with next_step=collect_vehicle_year if the year is not recorded yet."
    ),
    parameters=_vehicle_params("make", "Manufacturer, e.g. Toyota, Ford, Honda"),
    risk=ToolRisk.EXTERNAL,
    category="vehicle",
)
async def collect_vehicle_make(session_id: str = "", vehicles=None, vehicle_number: int = 1, make: str = "", **kwargs) -> str:
    return await _vehicle_step(vehicles, session_id, vehicle_number, "make", make)


@tool(
    name="collect_vehicle_model",
    description="Step 3 of 4. Validates the model for the recorded year and make.",
    parameters=_vehicle_params("model", "Model, e.g. Camry, F-150, Civic"),
    risk=ToolRisk.EXTERNAL,
    category="vehicle",
)
async def collect_vehicle_model(session_id: str = "", vehicles=None, vehicle_number: int = 1, model: str = "", **kwargs) -> str:
    return await _vehicle_step(vehicles, session_id, vehicle_number, "model", model)


@tool(
    name="collect_vehicle_trim",
    description="Step 4 of 4. Records the trim level and marks the vehicle complete.",
    parameters=_vehicle_params("trim", "Trim level, e.g. LX, EX, Sport"),
    risk=ToolRisk.EXTERNAL,
    category="vehicle",
)
async def collect_vehicle_trim(session_id: str = "", vehicles=None, vehicle_number: int = 1, trim: str = "", **kwargs) -> str:
    return await _vehicle_step(vehicles, session_id, vehicle_number, "trim", trim)


# ── Lookups ──────────────────────────────────────────────────────────

@tool(
    name="validate_zipcode",
    description="Check that a zip code exists and is serviceable. Saves it to the address when valid.",
    parameters={
        "properties": {"zip_code": {"type": "string"}},
        "required": ["zip_code"],
    },
    risk=ToolRisk.EXTERNAL,
    category="lookup",
)
async def validate_zipcode(session_id: str = "", sessions=None, vehicles=None, zip_code: str = "", **kwargs) -> str:
    result = await vehicles.catalog.validate_zip_code(zip_code)
    if not result["valid"]:
        return _fail(result["error"], zip_code=result["zip_code"])
    try:
        sessions.update_session_data(session_id, {"personal_info": {"address": {"zip_code": result["zip_code"]}}})
    except SessionNotFound:
        return _fail("This session has expired.")
    return _ok(zip_code=result["zip_code"])


@tool(
    name="get_vehicle_makes",
    description="List the vehicle makes available for a model year. Use when the caller is unsure of the make.",
    parameters={
        "properties": {"year": {"type": "integer"}},
        "required": ["year"],
    },
    risk=ToolRisk.EXTERNAL,
    category="lookup",
)
async def get_vehicle_makes(vehicles=None, year=None, **kwargs) -> str:
    value, error = validate_year(year)
    if error:
        return _fail(error)
    try:
        makes = await vehicles.catalog.get_makes(value)
    except CatalogUnavailable:
        return _fail(f"Unable to fetch vehicle makes for {value} right now.")
    return _ok(year=value, makes=makes, count=len(makes))


@tool(
    name="validate_and_summarize",
    description=(
        "Summarize the application so far: completion percentage per section and the "
        "required fields still missing. Use before wrapping up the call."
    ),
    parameters={"properties": {}, "required": []},
    risk=ToolRisk.READ,
    category="application",
)
async def validate_and_summarize(session_id: str = "", sessions=None, **kwargs) -> str:
    session = sessions.get_session(session_id)
    if session is None:
        return _fail("This session has expired.")
    missing = missing_fields(session.data)
    return _ok(
        completion=session.data.completion_status.model_dump(),
        missing_fields=missing,
        ready_for_quote=not missing,
        vehicles=[v.model_dump(mode="json") for v in session.data.vehicle_info.vehicles],
    )
