"""Recovery of a strict Itinerary from the model's free-form text.

The generative endpoint is an untrusted producer: the JSON may come wrapped
in markdown fences, with missing fields or with unusable place keys. Parsing
never raises; every outcome is a ``ParseResult`` carrying either the
itinerary or a ``ParseFailure`` whose ``kind`` is ``SyntaxError`` (not JSON)
or ``SchemaError`` (JSON, wrong shape).
"""
import json
import logging
import re
from typing import Any, Dict, Optional, Tuple

from .models import Itinerary, ItineraryMetadata, ItineraryPlace, ParseResult

logger = logging.getLogger(__name__)

JSON_FENCE = "```json"
FENCE = "```"

_ORDER_KEY = re.compile(r"[0-9]+")

_METADATA_KEYS: Dict[str, Tuple[str, ...]] = {
    "title": ("titulo", "title"),
    "generalDescription": ("descripcion_general", "generalDescription", "description"),
    "totalDuration": ("total_duracion", "totalDuration", "duration"),
    "totalDistance": ("total_distancia", "totalDistance", "distance"),
    "startCoordinate": ("coordenada_start", "startCoordinate"),
    "endCoordinate": ("coordenada_end", "endCoordinate"),
}

_PLACE_KEYS: Dict[str, Tuple[str, ...]] = {
    "averageCost": ("costo_promedio", "averageCost"),
    "recommendations": ("recomendaciones", "recommendations"),
    "notes": ("notas", "notes"),
    "coordinates": ("coordenadas", "coordinates"),
}


def strip_code_fences(raw_text: str) -> str:
    text = (raw_text or "").strip()
    if text[: len(JSON_FENCE)].lower() == JSON_FENCE:
        text = text[len(JSON_FENCE):]
    elif text.startswith(FENCE):
        text = text[len(FENCE):]
    if text.endswith(FENCE):
        text = text[: -len(FENCE)]
    return text.strip()


def _as_text(value: Any) -> str:
    if value is None or isinstance(value, bool):
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, dict):
        lat = value.get("lat", value.get("latitude"))
        lng = value.get("lng", value.get("longitude"))
        if isinstance(lat, (int, float)) and isinstance(lng, (int, float)):
            return f"{lat},{lng}"
    if isinstance(value, list) and len(value) == 2 and all(isinstance(v, (int, float)) for v in value):
        return f"{value[0]},{value[1]}"
    return ""


def _lookup(source: Dict[str, Any], keys: Tuple[str, ...]) -> str:
    for key in keys:
        text = _as_text(source.get(key))
        if text.strip():
            return text
    return ""


def _order_from_key(key: str) -> Optional[int]:
    digits = str(key).strip()
    if not _ORDER_KEY.fullmatch(digits):
        return None
    order = int(digits)
    return order if order >= 1 else None


def _parse_metadata(metadata: Dict[str, Any]) -> ItineraryMetadata:
    return ItineraryMetadata(**{field: _lookup(metadata, keys) for field, keys in _METADATA_KEYS.items()})


def parse_place(order: int, value: Any) -> Optional[ItineraryPlace]:
    if not isinstance(value, dict):
        return None
    name = _lookup(value, ("nombre", "name")).strip()
    if not name:
        return None
    fields = {field: _lookup(value, keys) for field, keys in _PLACE_KEYS.items()}
    return ItineraryPlace(order=order, name=name, **fields)


def parse_itinerary(raw_text: str, strict_order: bool = False) -> ParseResult:
    """Parse raw model text into an Itinerary.

    With ``strict_order`` the place keys must be exactly ``1..N``; otherwise
    invalid or duplicate keys are skipped and gaps are tolerated.
    """
    original = raw_text if isinstance(raw_text, str) else ""
    text = strip_code_fences(original)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        return ParseResult.fail(
            "SyntaxError",
            f"{exc.msg} (line {exc.lineno}, column {exc.colno})",
            original,
        )
    except (ValueError, RecursionError) as exc:
        return ParseResult.fail("SyntaxError", str(exc) or exc.__class__.__name__, original)

    if not isinstance(data, dict):
        return ParseResult.fail("SchemaError", "Expected a JSON object at the top level", original)
    metadata = data.get("metadata")
    if not isinstance(metadata, dict):
        return ParseResult.fail("SchemaError", "Missing or invalid 'metadata' object", original)
    raw_places = data["lugares"] if "lugares" in data else data.get("places")
    if not isinstance(raw_places, dict):
        return ParseResult.fail("SchemaError", "Missing or invalid 'lugares' object", original)

    places: Dict[int, ItineraryPlace] = {}
    skipped = []
    for key, value in raw_places.items():
        order = _order_from_key(key)
        if order is None:
            skipped.append(key)
            continue
        if order in places:
            if strict_order:
                return ParseResult.fail("SchemaError", f"Duplicate place order {order}", original)
            skipped.append(key)
            continue
        place = parse_place(order, value)
        if place is None:
            skipped.append(key)
            continue
        places[order] = place

    if strict_order and skipped:
        return ParseResult.fail("SchemaError", f"Unusable place entries: {', '.join(map(str, skipped))}", original)
    if skipped:
        logger.warning("Skipped %d unusable place entries: %s", len(skipped), skipped)
    if not places:
        return ParseResult.fail("SchemaError", "No usable place entries in 'lugares'", original)
    if strict_order and sorted(places) != list(range(1, len(places) + 1)):
        return ParseResult.fail(
            "SchemaError",
            f"Place orders must be consecutive from 1, got {sorted(places)}",
            original,
        )

    itinerary = Itinerary(
        metadata=_parse_metadata(metadata),
        places={str(order): places[order] for order in sorted(places)},
    )
    return ParseResult.success(itinerary)
