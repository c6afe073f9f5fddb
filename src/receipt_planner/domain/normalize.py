"""Validate provider output into the canonical :class:`MealPlan`."""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional

from ..logging import get_logger
from .errors import MalformedPlan
from .models import MEAL_SLOTS, PLAN_DAY_COUNT, DayPlan, MealEntry, MealPlan

_LOG = get_logger("normalize")

_FENCED_JSON = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


def _extract_fenced_json(text: str) -> Optional[str]:
    """If the model wrapped JSON in ``` or ```json fences, return the inner content."""
    match = _FENCED_JSON.search(text)
    if match and match.group(1):
        return match.group(1).strip()
    return None


def _parse_document(raw: Any) -> Dict[str, Any]:
    if not isinstance(raw, str):
        raise MalformedPlan("payload must be text", path="$")
    try:
        doc = json.loads(raw)
    except RecursionError as exc:
        raise MalformedPlan("document nested too deeply", path="$") from exc
    except ValueError as exc:
        fenced = _extract_fenced_json(raw)
        if fenced is None:
            raise MalformedPlan(f"not valid JSON ({exc})", path="$") from exc
        try:
            doc = json.loads(fenced)
        except RecursionError as inner:
            raise MalformedPlan("document nested too deeply", path="$") from inner
        except ValueError as inner:
            raise MalformedPlan(f"fenced block is not valid JSON ({inner})", path="$") from inner
    if not isinstance(doc, dict):
        raise MalformedPlan("top level must be an object", path="$")
    return doc


def _pick(obj: Dict[str, Any], *names: str) -> Any:
    """First alias whose value is present and not null."""
    for name in names:
        if obj.get(name) is not None:
            return obj[name]
    return None


def _string(value: Any, path: str) -> str:
    if not isinstance(value, str):
        raise MalformedPlan("expected a string", path=path)
    return value


def _string_list(value: Any, path: str) -> List[str]:
    if not isinstance(value, list):
        raise MalformedPlan("expected a list of strings", path=path)
    out: List[str] = []
    for idx, item in enumerate(value):
        out.append(_string(item, f"{path}[{idx}]"))
    return out


def _object(value: Any, path: str) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise MalformedPlan("expected an object", path=path)
    return value


def _meal(value: Any, path: str) -> MealEntry:
    obj = _object(value, path)
    if "name" not in obj:
        raise MalformedPlan("missing field", path=f"{path}.name")
    name = _string(obj["name"], f"{path}.name")
    ingredients = _pick(obj, "ingredients_used", "ingredientsUsed")
    if ingredients is None:
        raise MalformedPlan("missing field", path=f"{path}.ingredients_used")
    return MealEntry(name=name, ingredients_used=_string_list(ingredients, f"{path}.ingredients_used"))


def _day(value: Any, path: str) -> DayPlan:
    obj = _object(value, path)
    for required in ("day", "focus", "meals"):
        if required not in obj:
            raise MalformedPlan("missing field", path=f"{path}.{required}")
    label = _string(obj["day"], f"{path}.day")
    focus = _string(obj["focus"], f"{path}.focus")
    meals_obj = _object(obj["meals"], f"{path}.meals")

    for slot in MEAL_SLOTS:
        if slot not in meals_obj:
            raise MalformedPlan("missing meal", path=f"{path}.meals.{slot}")
    extra = sorted(k for k in meals_obj if k not in MEAL_SLOTS)
    if extra:
        raise MalformedPlan(f"unexpected meal(s): {', '.join(map(str, extra))}", path=f"{path}.meals")

    meals = {slot: _meal(meals_obj[slot], f"{path}.meals.{slot}") for slot in MEAL_SLOTS}
    return DayPlan(label=label, focus=focus, meals=meals)


def normalize_plan(raw_payload_text: Any) -> MealPlan:
    """Parse and validate a provider payload into a :class:`MealPlan`.

    Accepted shape (keys in snake_case or camelCase where noted):
    - pantry_summary / pantrySummary: list of strings, may be empty
    - days: exactly three entries, each with day, focus and meals
    - meals: exactly breakfast, lunch and dinner, each with name and
      ingredients_used / ingredientsUsed

    Raises :class:`MalformedPlan` naming the offending path. No partial plan
    is ever returned; strings pass through untouched.
    """
    doc = _parse_document(raw_payload_text)

    pantry_raw = _pick(doc, "pantry_summary", "pantrySummary")
    if pantry_raw is None:
        raise MalformedPlan("missing field", path="$.pantry_summary")
    pantry = _string_list(pantry_raw, "$.pantry_summary")

    if "days" not in doc:
        raise MalformedPlan("missing field", path="$.days")
    days_raw = doc["days"]
    if not isinstance(days_raw, list):
        raise MalformedPlan("expected a list", path="$.days")
    if len(days_raw) != PLAN_DAY_COUNT:
        raise MalformedPlan(f"expected exactly {PLAN_DAY_COUNT} days, got {len(days_raw)}", path="$.days")

    days = [_day(d, f"$.days[{idx}]") for idx, d in enumerate(days_raw)]
    _LOG.debug("Normalized plan with %d pantry item(s) and %d day(s)", len(pantry), len(days))
    return MealPlan(pantry_summary=pantry, days=days)
