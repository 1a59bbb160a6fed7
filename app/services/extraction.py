"""
Transcript extraction engine.

Pulls structured application fields out of dialogue text with an ordered
catalogue of lexical rules. Best effort: a rule that does not match simply
leaves its field out of the patch.

    rule  = FieldRule(path, patterns, normalizer)
    patch = extract(text)                     # pure, one turn
    acc   = merge_patches(acc, patch)         # explicit reducer
    acc   = extract_turn(acc, text)           # both in one call

Rules marked first_person only run on user turns: "I'm married" from the
assistant is not a fact about the caller.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from ..models.application import deep_merge

logger = logging.getLogger(__name__)

MAX_MENTIONED_VEHICLES = 2

Normalizer = Callable[[re.Match], Any]


@dataclass(frozen=True)
class FieldRule:
    path: tuple[str, ...]
    patterns: tuple[re.Pattern, ...]
    normalize: Normalizer
    first_person: bool = False

    def apply(self, text: str) -> Optional[Any]:
        """First pattern whose normalized capture is not None wins."""
        for pattern in self.patterns:
            match = pattern.search(text)
            if not match:
                continue
            value = self.normalize(match)
            if value is not None:
                return value
        return None


def _rx(*patterns: str, flags: int = re.IGNORECASE) -> tuple[re.Pattern, ...]:
    return tuple(re.compile(p, flags) for p in patterns)


# ── Vocabulary ───────────────────────────────────────────────────────

_NOT_NAMES = {
    "and", "but", "or", "so", "my", "i", "im", "here", "calling", "from",
    "with", "the", "a", "an", "is", "was", "looking", "just", "not", "sure",
    "zip", "phone", "email", "please", "thanks", "thank",
}

_NUMBER_WORDS = {
    "no": 0, "zero": 0, "none": 0, "one": 1, "a": 1, "an": 1, "single": 1,
    "two": 2, "three": 3, "four": 4, "five": 5, "six": 6,
}

_INSURERS = {
    "allstate": "Allstate",
    "state farm": "State Farm",
    "geico": "GEICO",
    "progressive": "Progressive",
    "nationwide": "Nationwide",
    "farmers": "Farmers",
    "liberty mutual": "Liberty Mutual",
    "usaa": "USAA",
    "travelers": "Travelers",
    "esurance": "Esurance",
    "american family": "American Family",
}

_MAKES = {
    "acura": "Acura", "audi": "Audi", "bmw": "BMW", "buick": "Buick",
    "cadillac": "Cadillac", "chevrolet": "Chevrolet", "chevy": "Chevrolet",
    "chrysler": "Chrysler", "dodge": "Dodge", "fiat": "Fiat", "ford": "Ford",
    "genesis": "Genesis", "gmc": "GMC", "honda": "Honda", "hyundai": "Hyundai",
    "infiniti": "Infiniti", "jaguar": "Jaguar", "jeep": "Jeep", "kia": "Kia",
    "land rover": "Land Rover", "lexus": "Lexus", "lincoln": "Lincoln",
    "mazda": "Mazda", "mercedes-benz": "Mercedes-Benz", "mercedes": "Mercedes-Benz",
    "mini": "MINI", "mitsubishi": "Mitsubishi", "nissan": "Nissan",
    "porsche": "Porsche", "ram": "Ram", "subaru": "Subaru", "tesla": "Tesla",
    "toyota": "Toyota", "volkswagen": "Volkswagen", "vw": "Volkswagen",
    "volvo": "Volvo",
}

_STATES = {
    "alabama": "AL", "alaska": "AK", "arizona": "AZ", "arkansas": "AR",
    "california": "CA", "colorado": "CO", "connecticut": "CT", "delaware": "DE",
    "florida": "FL", "georgia": "GA", "hawaii": "HI", "idaho": "ID",
    "illinois": "IL", "indiana": "IN", "iowa": "IA", "kansas": "KS",
    "kentucky": "KY", "louisiana": "LA", "maine": "ME", "maryland": "MD",
    "massachusetts": "MA", "michigan": "MI", "minnesota": "MN",
    "mississippi": "MS", "missouri": "MO", "montana": "MT", "nebraska": "NE",
    "nevada": "NV", "new hampshire": "NH", "new jersey": "NJ",
    "new mexico": "NM", "new york": "NY", "north carolina": "NC",
    "north dakota": "ND", "ohio": "OH", "oklahoma": "OK", "oregon": "OR",
    "pennsylvania": "PA", "rhode island": "RI", "south carolina": "SC",
    "south dakota": "SD", "tennessee": "TN", "texas": "TX", "utah": "UT",
    "vermont": "VT", "virginia": "VA", "washington": "WA",
    "west virginia": "WV", "wisconsin": "WI", "wyoming": "WY",
    "district of columbia": "DC",
}
_STATE_CODES = set(_STATES.values())

_STATE_ALT = "|".join(sorted((re.escape(s) for s in _STATES), key=len, reverse=True))
_INSURER_ALT = "|".join(sorted((re.escape(s) for s in _INSURERS), key=len, reverse=True))
_MAKE_ALT = "|".join(sorted((re.escape(s) for s in _MAKES), key=len, reverse=True))

_STREET_SUFFIX = (
    r"street|st|avenue|ave|road|rd|boulevard|blvd|drive|dr|lane|ln|way|"
    r"court|ct|place|pl|circle|cir|parkway|pkwy|terrace|ter|highway|hwy"
)


# ── Normalizers ──────────────────────────────────────────────────────

def _group(n: int = 1) -> Normalizer:
    def norm(m: re.Match) -> Optional[str]:
        value = m.group(n)
        return value.strip() if value else None
    return norm


def _name(n: int) -> Normalizer:
    def norm(m: re.Match) -> Optional[str]:
        value = m.group(n)
        if not value or value.lower().replace("'", "") in _NOT_NAMES:
            return None
        if value.islower() or value.isupper():
            return value[:1].upper() + value[1:].lower()
        return value
    return norm


def _count_word(m: re.Match) -> Optional[int]:
    raw = m.group(1).lower()
    if raw.isdigit():
        return int(raw)
    return _NUMBER_WORDS.get(raw)


def _const(value: Any) -> Normalizer:
    return lambda m: value


def _int_in_range(lo: int, hi: int) -> Normalizer:
    def norm(m: re.Match) -> Optional[int]:
        value = int(m.group(1).replace(",", ""))
        return value if lo <= value <= hi else None
    return norm


def normalize_phone(raw: str) -> Optional[str]:
    digits = re.sub(r"\D", "", raw)
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    if len(digits) != 10:
        return None
    return f"{digits[:3]}-{digits[3:6]}-{digits[6:]}"


def normalize_date(raw: str) -> Optional[str]:
    """MM/DD/YYYY or YYYY-MM-DD → YYYY-MM-DD. Impossible dates are dropped."""
    for fmt in ("%m/%d/%Y", "%Y-%m-%d", "%m-%d-%Y"):
        try:
            return datetime.strptime(raw, fmt).date().isoformat()
        except ValueError:
            continue
    return None


def normalize_state(raw: str) -> Optional[str]:
    raw = raw.strip().lower()
    if raw in _STATES:
        return _STATES[raw]
    code = raw.upper()
    return code if code in _STATE_CODES else None


def normalize_make(raw: str) -> str:
    return _MAKES.get(raw.lower(), raw.title())


def normalize_model(raw: str) -> str:
    if not raw.islower():
        return raw
    if any(ch.isdigit() for ch in raw) or "-" in raw:
        return raw.upper()
    return raw.title()


def _gender(m: re.Match) -> str:
    raw = m.group(1).lower()
    return {"man": "male", "woman": "female", "nonbinary": "non-binary"}.get(raw, raw)


def _need(m: re.Match) -> Optional[str]:
    raw = m.group(1).lower()
    if raw.startswith("new") or raw.startswith("first"):
        return "new"
    if raw.startswith("renew"):
        return "renewal"
    if raw.startswith("add"):
        return "adding_car"
    if raw.startswith("remov"):
        return "removing_car"
    if raw in ("lower", "cheaper", "better rate", "save"):
        return "lowering_premium"
    return None


def _vin(m: re.Match) -> Optional[str]:
    value = m.group(1).upper()
    if len(value) != 17 or set(value) & {"I", "O", "Q"}:
        return None
    return value


def _money(m: re.Match) -> Optional[float]:
    try:
        return float(m.group(1).replace(",", ""))
    except ValueError:
        return None


_COUNT = r"(no|zero|none|one|an|a|two|three|four|five|\d{1,2})"
_MILES = r"(\d{1,3}(?:,\d{3})+|\d{3,7})"


# ── Rule catalogue (priority order) ──────────────────────────────────

RULES: tuple[FieldRule, ...] = (
    # Personal
    FieldRule(
        ("personal_info", "first_name"),
        _rx(
            r"\bfirst name is\s+([A-Za-z][A-Za-z'-]+)",
            r"\bmy name(?: is|'s)\s+([A-Za-z][A-Za-z'-]+)",
            r"\bcall me\s+([A-Za-z][A-Za-z'-]+)",
        ),
        _name(1),
        first_person=True,
    ),
    FieldRule(
        ("personal_info", "last_name"),
        _rx(
            r"\b(?:last name|surname) is\s+([A-Za-z][A-Za-z'-]+)",
            r"\bmy name(?: is|'s)\s+[A-Za-z][A-Za-z'-]+\s+([A-Za-z][A-Za-z'-]+)",
        ),
        _name(1),
        first_person=True,
    ),
    FieldRule(
        ("personal_info", "email"),
        _rx(r"\b([A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,})\b"),
        lambda m: m.group(1).lower(),
    ),
    FieldRule(
        ("personal_info", "phone"),
        _rx(r"(?<!\d)((?:\+?1[\s.-]?)?\(?\d{3}\)?[\s.-]?\d{3}[\s.-]?\d{4})(?!\d)"),
        lambda m: normalize_phone(m.group(1)),
    ),
    FieldRule(
        ("personal_info", "date_of_birth"),
        _rx(
            r"\b(?:born|birth\s*day|birth\s*date|date of birth|dob)\D{0,20}?"
            r"(\d{1,2}/\d{1,2}/\d{4}|\d{4}-\d{2}-\d{2}|\d{1,2}-\d{1,2}-\d{4})"
        ),
        lambda m: normalize_date(m.group(1)),
    ),
    FieldRule(
        ("personal_info", "address", "street"),
        _rx(
            r"\b(?:live at|address is|street is|located at)\s+"
            rf"(\d+\s+(?:[A-Za-z0-9.]+\s+){{0,4}}?(?:{_STREET_SUFFIX}))\b\.?"
        ),
        _group(1),
    ),
    FieldRule(
        ("personal_info", "address", "city"),
        _rx(
            r"(?i:\b(?:i live in|city is|we live in|located in)\s+)"
            r"([A-Z][a-z]+(?:\s[A-Z][a-z]+)?)",
            flags=0,
        ),
        _group(1),
    ),
    FieldRule(
        ("personal_info", "address", "state"),
        _rx(rf"\b(?:live in|state is|located in)\s+(?:[A-Za-z ]+,\s*)?({_STATE_ALT})\b"),
        lambda m: normalize_state(m.group(1)),
    ),
    FieldRule(
        ("personal_info", "address", "zip_code"),
        _rx(
            r"\b(?:zip|zip\s*code|postal\s*code)\D{0,20}?(\d{5})(?!\d)",
            r"\b(?:live|located) in\b[^.]{0,40}?\b(\d{5})(?!\d)",
        ),
        _group(1),
    ),
    FieldRule(
        ("personal_info", "gender"),
        _rx(r"\b(?:i am|i'm|gender is)\s+(?:an?\s+)?(male|female|non-binary|nonbinary|man|woman)\b"),
        _gender,
        first_person=True,
    ),
    FieldRule(
        ("personal_info", "marital_status"),
        _rx(
            r"\b(?:i am|i'm|i am currently|i'm currently|marital status is)\s+(single|married|divorced|widowed)\b",
            r"\bmy (?:wife|husband|spouse)\b",
        ),
        lambda m: m.group(1).lower() if m.lastindex else "married",
        first_person=True,
    ),
    FieldRule(
        ("personal_info", "home_ownership"),
        _rx(
            r"\bi (own|rent)\s+(?:my|an|a|the|our)?\s*(?:home|house|apartment|condo|place|townhouse)\b",
            r"\b(?:i'm|i am) a (homeowner|renter)\b",
        ),
        lambda m: "own" if m.group(1).lower() in ("own", "homeowner") else "rent",
        first_person=True,
    ),
    FieldRule(
        ("personal_info", "military_service"),
        _rx(
            r"\b(?:never served|not a veteran|no military)\b",
            r"\b(?:veteran|active duty|served in the (?:military|army|navy|air force|marines|coast guard))\b",
        ),
        lambda m: not m.group(0).lower().startswith(("never", "not", "no ")),
        first_person=True,
    ),
    FieldRule(
        ("personal_info", "occupation"),
        _rx(r"\b(?:i work as|i'm employed as|my occupation is|i'm working as)\s+(?:an?\s+)?([A-Za-z][A-Za-z ]{1,30}?)(?=[.,!?]|\s+(?:and|at|for)\b|$)"),
        _group(1),
        first_person=True,
    ),
    FieldRule(
        ("personal_info", "has_prior_coverage"),
        _rx(
            r"\b(?:don't|do not|never|haven't)\s+(?:have|had|been)\s+(?:any\s+)?(?:car\s+|auto\s+)?(?:insurance|insured)\b",
            r"\b(?:i|we)\s+(?:have|had|currently have|'ve had)\s+(?:car\s+|auto\s+)?insurance\b",
            rf"\b(?:with|through|insured (?:by|with))\s+(?:{_INSURER_ALT})\b",
        ),
        lambda m: not re.match(r"(?:don't|do not|never|haven't)", m.group(0), re.IGNORECASE),
        first_person=True,
    ),
    FieldRule(
        ("personal_info", "previous_insurer"),
        _rx(rf"\b({_INSURER_ALT})\b"),
        lambda m: _INSURERS[m.group(1).lower()],
        first_person=True,
    ),
    # Vehicle
    FieldRule(
        ("vehicle_info", "num_vehicles"),
        _rx(
            r"\bhow many (?:vehicles|cars)\D{0,20}?(\d)\b",
            rf"\b{_COUNT}\s+(?:cars?|vehicles?|autos?)\b(?!\s+(?:accident|insurance))",
        ),
        lambda m: (_count_word(m) or None),
    ),
    FieldRule(
        ("vehicle_info", "vin"),
        _rx(r"\b(?:vin|vehicle identification number)\D{0,20}?([A-HJ-NPR-Z0-9]{17})\b"),
        _vin,
    ),
    FieldRule(
        ("vehicle_info", "annual_mileage"),
        _rx(rf"\b{_MILES}\s*(?:miles|mi)\s+(?:a|per|each)\s+year\b"),
        _int_in_range(0, 100_000),
    ),
    FieldRule(
        ("vehicle_info", "current_mileage"),
        _rx(
            rf"\b(?:odometer(?: reads| says| is at)?|current mileage is|mileage is|it has)\s+(?:about\s+|around\s+)?{_MILES}"
            r"(?![\d,])(?!\s*(?:miles|mi)?\s*(?:a|per|each)\s+year)"
        ),
        _int_in_range(0, 2_000_000),
    ),
    # Coverage
    FieldRule(
        ("coverage_prefs", "insurance_need"),
        _rx(
            r"\b(?:looking for|looking to|need|want|would like|trying to)\b.{0,40}?"
            r"\b(new policy|new insurance|first policy|renew(?:al)?|add(?:ing)?|remov(?:e|ing)|lower|cheaper|better rate|save)\b"
        ),
        _need,
    ),
    FieldRule(
        ("coverage_prefs", "current_premium"),
        _rx(r"\b(?:paying|pay|premium is|premium of)\s+(?:about\s+|around\s+|roughly\s+)?\$?\s?(\d[\d,]*(?:\.\d{1,2})?)"),
        _money,
        first_person=True,
    ),
    # Driving
    FieldRule(
        ("driving_history", "years_licensed"),
        _rx(
            r"\b(?:licensed|driving|had (?:my|a) license)\s+for\s+(\d{1,2})\s+years\b",
            r"\b(\d{1,2})\s+years\s+(?:of\s+)?(?:driving|licensed)\b",
        ),
        _int_in_range(0, 80),
    ),
    FieldRule(
        ("driving_history", "license_state"),
        _rx(rf"\b(?:licensed in|license is from|license from|licence from)\s+({_STATE_ALT}|[A-Za-z]{{2}})\b"),
        lambda m: normalize_state(m.group(1)),
    ),
    FieldRule(
        ("driving_history", "accident_count"),
        _rx(
            r"\bnever (?:had|been in) an? (?:accident|crash)",
            rf"\b{_COUNT}\s+(?:at[- ]fault\s+)?(?:accidents?|crash(?:es)?)\b",
        ),
        lambda m: 0 if m.lastindex is None else _count_word(m),
        first_person=True,
    ),
    FieldRule(
        ("driving_history", "violation_count"),
        _rx(
            r"\bnever (?:had|gotten|got) a (?:ticket|violation)",
            rf"\b{_COUNT}\s+(?:speeding\s+|traffic\s+|moving\s+)?(?:tickets?|violations?)\b",
        ),
        lambda m: 0 if m.lastindex is None else _count_word(m),
        first_person=True,
    ),
    FieldRule(
        ("driving_history", "claim_count"),
        _rx(
            r"\bnever (?:filed|made) a claim",
            rf"\b{_COUNT}\s+(?:insurance\s+)?claims?\b",
        ),
        lambda m: 0 if m.lastindex is None else _count_word(m),
        first_person=True,
    ),
)

_VEHICLE_MENTION = re.compile(
    rf"\b((?:19|20)\d{{2}})\s+({_MAKE_ALT})\s+([A-Za-z0-9][A-Za-z0-9-]*)",
    re.IGNORECASE,
)


# ── Engine ───────────────────────────────────────────────────────────

def _set_path(target: dict, path: tuple[str, ...], value: Any) -> None:
    node = target
    for key in path[:-1]:
        node = node.setdefault(key, {})
    node[path[-1]] = value


def extract_vehicle_mentions(text: str) -> list[dict]:
    """'2019 Honda Civic' style mentions, first-seen order, de-duplicated."""
    max_year = datetime.now().year + 1
    found: list[dict] = []
    seen: set[str] = set()
    for m in _VEHICLE_MENTION.finditer(text):
        year = int(m.group(1))
        if not 1900 <= year <= max_year:
            continue
        vehicle = {
            "year": year,
            "make": normalize_make(m.group(2)),
            "model": normalize_model(m.group(3)),
        }
        key = vehicle_key(vehicle)
        if key in seen:
            continue
        seen.add(key)
        found.append(vehicle)
    return found


def vehicle_key(vehicle: dict) -> str:
    return " ".join(
        str(vehicle.get(k) or "").strip().lower() for k in ("year", "make", "model")
    )


def extract(text: str, role: str = "user") -> dict:
    """
    Extract a partial application patch from one turn of dialogue.
    Pure: the same text always yields the same patch. Unmatched fields are absent.
    """
    if not text or not text.strip():
        return {}

    patch: dict = {}
    for rule in RULES:
        if rule.first_person and role != "user":
            continue
        value = rule.apply(text)
        if value is not None:
            _set_path(patch, rule.path, value)

    mentions = extract_vehicle_mentions(text)
    if mentions:
        _set_path(patch, ("vehicle_info", "mentioned_vehicles"), mentions[:MAX_MENTIONED_VEHICLES])

    if patch:
        logger.debug("Extracted fields from %s turn: %s", role, _paths(patch))
    return patch


def merge_patches(prior: dict, patch: dict) -> dict:
    """
    Reducer: fold a new turn's patch into the accumulated patch.
    Later values win per field. Vehicle mentions accumulate in first-seen order.
    """
    prior_mentions = (prior.get("vehicle_info") or {}).get("mentioned_vehicles") or []
    new_mentions = (patch.get("vehicle_info") or {}).get("mentioned_vehicles") or []

    merged = deep_merge(prior, patch)

    if prior_mentions or new_mentions:
        combined: list[dict] = []
        seen: set[str] = set()
        for v in list(prior_mentions) + list(new_mentions):
            key = vehicle_key(v)
            if key not in seen:
                seen.add(key)
                combined.append(dict(v))
        merged.setdefault("vehicle_info", {})["mentioned_vehicles"] = combined[:MAX_MENTIONED_VEHICLES]
    return merged


def extract_turn(prior: dict, text: str, role: str = "user") -> dict:
    return merge_patches(prior, extract(text, role=role))


def aggregate(turns: list[tuple[str, str]]) -> dict:
    """Reduce a list of (role, text) turns into one patch."""
    acc: dict = {}
    for role, text in turns:
        acc = extract_turn(acc, text, role=role)
    return acc


def _paths(patch: dict, prefix: str = "") -> list[str]:
    out = []
    for key, value in patch.items():
        path = f"{prefix}.{key}" if prefix else key
        if isinstance(value, dict):
            out.extend(_paths(value, path))
        else:
            out.append(path)
    return out
