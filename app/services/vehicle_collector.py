"""
Stepwise vehicle collection.

Each vehicle slot (1 or 2) is filled in order: year → make → model → trim.
Every step is re-validated against the reference catalogue; a rejected value
leaves the slot exactly as it was and tells the caller which step to retry.

The validated `vehicles` list is the authoritative vehicle record. Slot 1 is
mirrored into the flat vehicle_info year/make/model/trim fields as-is, so a
reset step clears them along with the slot.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from ..core.errors import CatalogUnavailable
from ..core.flags import get_flags
from ..models.application import VehicleRecord
from ..models.session import utcnow
from .session_manager import SessionManager
from .vehicle_catalog import VehicleCatalog, match_option, validate_year

logger = logging.getLogger(__name__)

STEPS = ("year", "make", "model", "trim")
MAX_OPTIONS = 10


@dataclass
class StepResult:
    success: bool
    step: str
    vehicle_number: int
    next_step: Optional[str] = None
    message: Optional[str] = None
    error: Optional[str] = None
    vehicle: Optional[dict] = None
    options: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        out = {
            "success": self.success,
            "step": self.step,
            "vehicle_number": self.vehicle_number,
            "next_step": self.next_step,
        }
        if self.message:
            out["message"] = self.message
        if self.error:
            out["error"] = self.error
        if self.vehicle is not None:
            out["vehicle"] = self.vehicle
        if self.options:
            out["available_options"] = self.options
        return out


class VehicleCollector:
    def __init__(self, sessions: SessionManager, catalog: Optional[VehicleCatalog] = None):
        self.sessions = sessions
        self.catalog = catalog or VehicleCatalog()

    # ── Slot access ──────────────────────────────────────────────────

    def _slot(self, session_id: str, number: int) -> Optional[VehicleRecord]:
        session = self.sessions.require_session(session_id)
        for record in session.data.vehicle_info.vehicles:
            if record.vehicle_number == number:
                return record
        return None

    def _save(self, session_id: str, record: VehicleRecord) -> None:
        session = self.sessions.require_session(session_id)
        others = [v for v in session.data.vehicle_info.vehicles if v.vehicle_number != record.vehicle_number]
        vehicles = sorted(others + [record], key=lambda v: v.vehicle_number)

        values: dict = {"vehicles": [v.model_dump() for v in vehicles]}
        if record.vehicle_number == 1:
            for key in ("year", "make", "model", "trim"):
                values[key] = getattr(record, key)
        self.sessions.set_fields(session_id, "vehicle_info", values)

    @staticmethod
    def _reject(step: str, number: int, error: str, next_step: str, options=None) -> StepResult:
        return StepResult(
            success=False,
            step=step,
            vehicle_number=number,
            error=error,
            next_step=next_step,
            options=list(options or [])[:MAX_OPTIONS],
        )

    # ── Steps ────────────────────────────────────────────────────────

    async def collect_year(self, session_id: str, vehicle_number: int, year) -> StepResult:
        if vehicle_number not in (1, 2):
            return self._reject("year", vehicle_number, "Vehicle number must be 1 or 2", "collect_vehicle_year")

        value, error = validate_year(year)
        if error:
            return self._reject("year", vehicle_number, error, "collect_vehicle_year")

        current = self._slot(session_id, vehicle_number)
        if current and current.year == value:
            record = current
        else:
            # New year invalidates make/model/trim chosen for the old one
            record = VehicleRecord(vehicle_number=vehicle_number, year=value)
        self._save(session_id, record)

        logger.info("Session %s vehicle %d year: %d", session_id, vehicle_number, value)
        return StepResult(
            success=True,
            step="year",
            vehicle_number=vehicle_number,
            next_step="collect_vehicle_make",
            vehicle=record.model_dump(mode="json"),
            message=f"{value} is a valid year. What's the make of your {value} vehicle?",
        )

    async def collect_make(self, session_id: str, vehicle_number: int, make: str) -> StepResult:
        current = self._slot(session_id, vehicle_number)
        if current is None or current.year is None:
            return self._reject("make", vehicle_number, "Please provide the vehicle year first.", "collect_vehicle_year")
        if not make or not make.strip():
            return self._reject("make", vehicle_number, "Please provide the vehicle make.", "collect_vehicle_make")

        canonical = make.strip().title()
        if get_flags().use_vehicle_catalog:
            try:
                makes = await self.catalog.get_makes(current.year)
            except CatalogUnavailable:
                return self._reject("make", vehicle_number, "Unable to validate vehicle make at this time.", "collect_vehicle_make")
            found = match_option(make, makes)
            if found is None:
                return self._reject(
                    "make", vehicle_number,
                    f'"{make}" is not a valid make for {current.year}. '
                    f"Available makes include: {', '.join(makes[:5])}",
                    "collect_vehicle_make",
                    makes,
                )
            canonical = found

        record = current.model_copy(update={
            "make": canonical, "model": None, "trim": None,
            "curated_model": None, "curated_trim": None, "validated": False,
        })
        self._save(session_id, record)

        logger.info("Session %s vehicle %d make: %s", session_id, vehicle_number, canonical)
        return StepResult(
            success=True,
            step="make",
            vehicle_number=vehicle_number,
            next_step="collect_vehicle_model",
            vehicle=record.model_dump(mode="json"),
            message=f"{record.year} {canonical}. What's the model?",
        )

    async def collect_model(self, session_id: str, vehicle_number: int, model: str) -> StepResult:
        current = self._slot(session_id, vehicle_number)
        if current is None or current.year is None or current.make is None:
            return self._reject(
                "model", vehicle_number,
                "Please provide the vehicle year and make first.",
                "collect_vehicle_year" if current is None or current.year is None else "collect_vehicle_make",
            )
        if not model or not model.strip():
            return self._reject("model", vehicle_number, "Please provide the vehicle model.", "collect_vehicle_model")

        canonical = model.strip()
        if get_flags().use_vehicle_catalog:
            try:
                models = await self.catalog.get_models(current.year, current.make)
            except CatalogUnavailable:
                return self._reject("model", vehicle_number, "Unable to validate vehicle model at this time.", "collect_vehicle_model")
            found = match_option(model, models)
            if found is None:
                return self._reject(
                    "model", vehicle_number,
                    f'"{model}" is not a valid {current.make} model for {current.year}. '
                    f"Available models include: {', '.join(models[:5])}",
                    "collect_vehicle_model",
                    models,
                )
            canonical = found

        record = current.model_copy(update={
            "model": canonical, "curated_model": canonical,
            "trim": None, "curated_trim": None, "validated": False,
        })
        self._save(session_id, record)

        logger.info("Session %s vehicle %d model: %s", session_id, vehicle_number, canonical)
        return StepResult(
            success=True,
            step="model",
            vehicle_number=vehicle_number,
            next_step="collect_vehicle_trim",
            vehicle=record.model_dump(mode="json"),
            message=f"{record.year} {record.make} {canonical}. What's the trim level?",
        )

    async def collect_trim(self, session_id: str, vehicle_number: int, trim: str) -> StepResult:
        current = self._slot(session_id, vehicle_number)
        if current is None or current.year is None or current.make is None or current.model is None:
            return self._reject(
                "trim", vehicle_number,
                "Please provide the vehicle year, make, and model first.",
                "collect_vehicle_year",
            )
        if not trim or not trim.strip():
            return self._reject("trim", vehicle_number, "Please provide the trim level.", "collect_vehicle_trim")

        spoken = trim.strip()
        curated = None
        if get_flags().use_vehicle_catalog:
            try:
                trims = await self.catalog.get_trims(current.year, current.make, current.model)
            except CatalogUnavailable:
                trims = []
            curated = match_option(spoken, trims)
            if curated is None:
                logger.info(
                    "Trim %r not in catalogue for %s %s %s, accepting as spoken",
                    spoken, current.year, current.make, current.model,
                )

        record = current.model_copy(update={
            "trim": curated or spoken,
            "curated_trim": curated,
            "collected_at": utcnow(),
            "validated": True,
        })
        self._save(session_id, record)

        logger.info("Session %s vehicle %d complete: %s %s %s %s",
                    session_id, vehicle_number, record.year, record.make, record.model, record.trim)
        return StepResult(
            success=True,
            step="trim",
            vehicle_number=vehicle_number,
            next_step="ask_second_vehicle" if vehicle_number == 1 else "collect_personal_info",
            vehicle=record.model_dump(mode="json"),
            message=f"Got your {record.year} {record.make} {record.model} {record.trim} recorded.",
        )

    async def collect(self, session_id: str, vehicle_number: int, step: str, value) -> StepResult:
        if step not in STEPS:
            raise ValueError(f"Unknown vehicle step: {step}")
        handler = getattr(self, f"collect_{step}")
        return await handler(session_id, vehicle_number, value)
