"""
Completion scoring for the quote application.

Each section score is the rounded percentage of its tracked fields that are
set. Overall is the rounded mean of the four section scores. A scalar field
counts as set when it is not None; a nested coverage block counts only once
one of its own fields is set. Merges never unset a leaf, so merging additional
data never lowers a score.
"""

from pydantic import BaseModel

from ..models.application import Application, CompletionStatus


def _pct(present: int, total: int) -> int:
    return round(present / total * 100) if total else 0


def _filled(value) -> bool:
    if isinstance(value, BaseModel):
        return any(v is not None for v in value.model_dump().values())
    return value is not None


def _count(*values) -> int:
    return sum(1 for v in values if _filled(v))


def personal_score(app: Application) -> int:
    p = app.personal_info
    has_address = p.address.street is not None and p.address.city is not None
    present = _count(p.first_name, p.last_name, p.date_of_birth, p.phone, p.email)
    return _pct(present + (1 if has_address else 0), 6)


def vehicle_score(app: Application) -> int:
    v = app.vehicle_info
    present = _count(v.make, v.model, v.year, v.vin, v.current_mileage, v.annual_mileage)
    return _pct(present, 6)


def coverage_score(app: Application) -> int:
    c = app.coverage_prefs
    return _pct(_count(c.liability_limits, c.comprehensive, c.collision), 3)


def driving_score(app: Application) -> int:
    d = app.driving_history
    return _pct(_count(d.license_number, d.license_state, d.years_licensed), 3)


def compute_completion(app: Application) -> CompletionStatus:
    scores = {
        "personal_info": personal_score(app),
        "vehicle_info": vehicle_score(app),
        "coverage_prefs": coverage_score(app),
        "driving_history": driving_score(app),
    }
    overall = round(sum(scores.values()) / len(scores))
    return CompletionStatus(overall=overall, **scores)


def with_completion(app: Application) -> Application:
    """Return app with completion_status recomputed."""
    return app.model_copy(update={"completion_status": compute_completion(app)})


def missing_fields(app: Application) -> list[str]:
    """Human-readable list of required fields still missing. Used in summaries."""
    p, v, c, d = app.personal_info, app.vehicle_info, app.coverage_prefs, app.driving_history
    checks = [
        ("first name", p.first_name),
        ("last name", p.last_name),
        ("date of birth", p.date_of_birth),
        ("street address", p.address.street),
        ("city", p.address.city),
        ("phone", p.phone),
        ("email", p.email),
        ("vehicle make", v.make),
        ("vehicle model", v.model),
        ("vehicle year", v.year),
        ("VIN", v.vin),
        ("current mileage", v.current_mileage),
        ("annual mileage", v.annual_mileage),
        ("liability limits", c.liability_limits),
        ("comprehensive coverage", c.comprehensive),
        ("collision coverage", c.collision),
        ("license number", d.license_number),
        ("license state", d.license_state),
        ("years licensed", d.years_licensed),
    ]
    return [name for name, value in checks if not _filled(value)]
