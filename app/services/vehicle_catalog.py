"""
Vehicle / zip code reference lookup.

Curated catalogue of makes, models and trims per model year, plus zip code
validation. Static JSON endpoints:

    {base}/nxrdzipcode/{zip5}.json
    {base}/nxrdpolk/curated/{year}.json
    {base}/nxrdpolk/curated/{year}/{make}.json
    {base}/nxrdpolk/curated/{year}/{make}/{model}.json
"""

import logging
import re
from datetime import datetime
from typing import Any, Optional

import httpx

from ..core.config import get_settings
from ..core.errors import CatalogUnavailable

logger = logging.getLogger(__name__)

_client: Optional[httpx.AsyncClient] = None

ZIP_RE = re.compile(r"^\d{5}(-\d{4})?$")


def _get_client() -> httpx.AsyncClient:
    global _client
    if _client is None or _client.is_closed:
        _client = httpx.AsyncClient(
            timeout=httpx.Timeout(connect=5, read=10, write=5, pool=5),
        )
    return _client


async def close_client():
    global _client
    if _client and not _client.is_closed:
        await _client.aclose()
        _client = None


def _slug(value: str) -> str:
    return re.sub(r"\s+", "", value.strip().lower())


def _names(payload: Any, *keys: str) -> list[str]:
    """
    Catalogue responses come as a list of strings, a list of objects, or an
    object wrapping one of those under a collection key.
    """
    if isinstance(payload, dict):
        for wrapper in ("makes", "models", "trims", "data", "results"):
            if isinstance(payload.get(wrapper), list):
                payload = payload[wrapper]
                break
        else:
            return []
    if not isinstance(payload, list):
        return []

    names = []
    for entry in payload:
        if isinstance(entry, str):
            names.append(entry)
        elif isinstance(entry, dict):
            for key in keys + ("name",):
                if isinstance(entry.get(key), str):
                    names.append(entry[key])
                    break
    return sorted(set(names))


def match_option(value: str, options: list[str]) -> Optional[str]:
    """Case/space-insensitive match against catalogue entries. Returns the canonical entry."""
    wanted = _slug(value)
    for option in options:
        if _slug(option) == wanted:
            return option
    return None


# ── Year ─────────────────────────────────────────────────────────────

def validate_year(year: Any) -> tuple[Optional[int], Optional[str]]:
    """Returns (year, None) when acceptable, else (None, error message)."""
    settings = get_settings()
    try:
        value = int(str(year).strip())
    except (TypeError, ValueError):
        return None, "Please provide the vehicle year as a four-digit number."

    if value < settings.min_vehicle_year:
        return None, (
            f"Sorry, we can only insure vehicles from {settings.min_vehicle_year} and newer."
        )
    max_year = datetime.now().year + 1
    if value > max_year:
        return None, f"Vehicle year cannot be later than {max_year}."
    return value, None


# ── Catalogue client ─────────────────────────────────────────────────

class VehicleCatalog:
    def __init__(self, base_url: Optional[str] = None, client: Optional[httpx.AsyncClient] = None):
        self.base_url = (base_url or get_settings().vehicle_catalog_base_url).rstrip("/")
        self._client = client
        self._cache: dict[str, Any] = {}

    def _http(self) -> httpx.AsyncClient:
        return self._client or _get_client()

    async def _get_json(self, path: str) -> Optional[Any]:
        if path in self._cache:
            return self._cache[path]

        url = f"{self.base_url}/{path}"
        try:
            resp = await self._http().get(url)
        except httpx.HTTPError as e:
            logger.warning("Catalogue request failed: GET %s: %s", url, e)
            raise CatalogUnavailable(str(e)) from e

        if resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            logger.warning("Catalogue returned %d for %s", resp.status_code, url)
            raise CatalogUnavailable(f"HTTP {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as e:
            raise CatalogUnavailable(f"invalid JSON from {url}") from e

        self._cache[path] = data
        return data

    async def get_makes(self, year: int) -> list[str]:
        return _names(await self._get_json(f"nxrdpolk/curated/{year}.json"), "make")

    async def get_models(self, year: int, make: str) -> list[str]:
        data = await self._get_json(f"nxrdpolk/curated/{year}/{_slug(make)}.json")
        return _names(data, "model")

    async def get_trims(self, year: int, make: str, model: str) -> list[str]:
        data = await self._get_json(
            f"nxrdpolk/curated/{year}/{_slug(make)}/{_slug(model)}.json"
        )
        return _names(data, "trim")

    async def validate_zip_code(self, zip_code: str) -> dict:
        """
        Returns {"valid": True, "zip_code": "90210", "data": {...}} or
        {"valid": False, "zip_code": <as given>, "error": "..."}.
        """
        zip_code = (zip_code or "").strip()
        if not ZIP_RE.match(zip_code):
            return {
                "valid": False,
                "zip_code": zip_code,
                "error": "Zip code must be 5 digits (e.g., 90210) or 9 digits (e.g., 90210-1234)",
            }

        zip5 = zip_code.split("-")[0]
        try:
            data = await self._get_json(f"nxrdzipcode/{zip5}.json")
        except CatalogUnavailable:
            return {
                "valid": False,
                "zip_code": zip_code,
                "error": "Unable to validate zip code at this time.",
            }

        if not data or (isinstance(data, dict) and data.get("valid") is False):
            return {
                "valid": False,
                "zip_code": zip_code,
                "error": "This zip code is not valid or not serviceable.",
            }
        return {"valid": True, "zip_code": zip5, "data": data}
