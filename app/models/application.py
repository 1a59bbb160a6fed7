"""
Insurance quote application schema.

Every field is optional: the application fills up incrementally as the
conversation goes on. Patches are merged additively (see merge_application).
"""

import copy
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _Schema(BaseModel):
    model_config = ConfigDict(extra="ignore")


# ── Personal ─────────────────────────────────────────────────────────

class Address(_Schema):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = Field(default=None, pattern=r"^\d{5}(-\d{4})?$")

    @field_validator("state")
    @classmethod
    def _two_letter_state(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip().upper()
        if len(v) != 2 or not v.isalpha():
            raise ValueError("state must be a two-letter code")
        return v


class PersonalInfo(_Schema):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    date_of_birth: Optional[str] = None
    address: Address = Field(default_factory=Address)
    phone: Optional[str] = None
    email: Optional[str] = Field(default=None, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    gender: Optional[Literal["male", "female", "non-binary"]] = None
    marital_status: Optional[Literal["single", "married", "divorced", "widowed"]] = None
    home_ownership: Optional[Literal["own", "rent"]] = None
    military_service: Optional[bool] = None
    occupation: Optional[str] = None
    previous_insurer: Optional[str] = None
    has_prior_coverage: Optional[bool] = None


# ── Vehicle ──────────────────────────────────────────────────────────

class VehicleRecord(_Schema):
    """A vehicle confirmed step by step against the reference catalogue."""
    vehicle_number: int = Field(ge=1, le=2)
    year: Optional[int] = None
    make: Optional[str] = None
    model: Optional[str] = None
    trim: Optional[str] = None
    curated_model: Optional[str] = None
    curated_trim: Optional[str] = None
    vehicle_type_code: str = "P"
    collected_at: Optional[datetime] = None
    validated: bool = False


class MentionedVehicle(_Schema):
    """A vehicle heard in free text. Advisory only."""
    year: Optional[int] = None
    make: Optional[str] = None
    model: Optional[str] = None


class VehicleInfo(_Schema):
    year: Optional[int] = Field(default=None, ge=1900, le=2100)
    make: Optional[str] = None
    model: Optional[str] = None
    trim: Optional[str] = None
    vin: Optional[str] = Field(default=None, min_length=17, max_length=17)
    current_mileage: Optional[int] = Field(default=None, ge=0)
    annual_mileage: Optional[int] = Field(default=None, ge=0, le=100_000)
    ownership_status: Optional[Literal["owned", "leased", "financed"]] = None
    parking_location: Optional[Literal["garage", "driveway", "street", "lot"]] = None
    primary_use: Optional[Literal["commuting", "pleasure", "business"]] = None
    safety_features: list[str] = Field(default_factory=list)
    num_vehicles: Optional[int] = Field(default=None, ge=1)
    vehicles: list[VehicleRecord] = Field(default_factory=list, max_length=2)
    mentioned_vehicles: list[MentionedVehicle] = Field(default_factory=list, max_length=2)


# ── Coverage ─────────────────────────────────────────────────────────

class LiabilityLimits(_Schema):
    bodily_injury: Optional[str] = None
    property_damage: Optional[str] = None


class PhysicalDamageCoverage(_Schema):
    selected: Optional[bool] = None
    deductible: Optional[int] = Field(default=None, ge=0)


class AdditionalCoverage(_Schema):
    rental: Optional[bool] = None
    roadside: Optional[bool] = None
    gap_coverage: Optional[bool] = None


class CoveragePreferences(_Schema):
    liability_limits: Optional[LiabilityLimits] = None
    comprehensive: Optional[PhysicalDamageCoverage] = None
    collision: Optional[PhysicalDamageCoverage] = None
    additional_coverage: Optional[AdditionalCoverage] = None
    policy_start_date: Optional[str] = None
    insurance_need: Optional[
        Literal["new", "renewal", "adding_car", "removing_car", "lowering_premium", "other"]
    ] = None
    current_premium: Optional[float] = Field(default=None, ge=0)


# ── Driving ──────────────────────────────────────────────────────────

class DrivingIncident(_Schema):
    date: Optional[str] = None
    type: Optional[str] = None
    description: Optional[str] = None
    at_fault: Optional[bool] = None
    amount: Optional[float] = None


class DrivingHistory(_Schema):
    license_number: Optional[str] = None
    license_state: Optional[str] = None
    years_licensed: Optional[int] = Field(default=None, ge=0, le=80)
    accidents: list[DrivingIncident] = Field(default_factory=list)
    violations: list[DrivingIncident] = Field(default_factory=list)
    claims: list[DrivingIncident] = Field(default_factory=list)
    accident_count: Optional[int] = Field(default=None, ge=0)
    violation_count: Optional[int] = Field(default=None, ge=0)
    claim_count: Optional[int] = Field(default=None, ge=0)
    defensive_driving: Optional[bool] = None


# ── Application ──────────────────────────────────────────────────────

class CompletionStatus(_Schema):
    personal_info: int = 0
    vehicle_info: int = 0
    coverage_prefs: int = 0
    driving_history: int = 0
    overall: int = 0


class Application(_Schema):
    personal_info: PersonalInfo = Field(default_factory=PersonalInfo)
    vehicle_info: VehicleInfo = Field(default_factory=VehicleInfo)
    coverage_prefs: CoveragePreferences = Field(default_factory=CoveragePreferences)
    driving_history: DrivingHistory = Field(default_factory=DrivingHistory)
    completion_status: CompletionStatus = Field(default_factory=CompletionStatus)


# ── Merge ────────────────────────────────────────────────────────────

def _is_blank(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def deep_merge(base: dict, patch: dict) -> dict:
    """
    Merge patch into a copy of base.

    Blank leaves (None, "", [], {}) in the patch are skipped, nested dicts merge
    recursively, anything else (scalars, lists) replaces the base value. A
    nested dict holding only blank leaves never creates a section.
    """
    merged = copy.deepcopy(base)
    for key, value in patch.items():
        if _is_blank(value):
            continue
        if isinstance(value, dict):
            current = merged.get(key)
            nested = deep_merge(current if isinstance(current, dict) else {}, value)
            if nested or isinstance(current, dict):
                merged[key] = nested
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def merge_application(app: Application, patch: dict) -> Application:
    """
    Return a new Application with patch merged in.
    completion_status is derived and never taken from a patch.
    Raises pydantic.ValidationError if the merged result is invalid.
    """
    patch = {k: v for k, v in patch.items() if k != "completion_status"}
    merged = deep_merge(app.model_dump(mode="python"), patch)
    return Application.model_validate(merged)
