"""
Validation and normalization of provider output.

Every provider returns untyped JSON; this module is the single place where
it is checked against the bill shape and turned into an ExtractedBill.

Only ``totalCurrentCharges`` is coerced (models often emit it as currency
text such as "$1,234.56"). Every other field must already have the right
type, otherwise a ValidationError is raised. NaN and infinities are not numbers.
"""

import math
import re
from typing import Any, Dict, List, Optional

from ai_bill_reader.storage.models import (
    ExtractedBill,
    LineItem,
    UsageByYear,
    UsageChart,
    UsageDataPoint,
)

from .errors import ValidationError

_NON_NUMERIC = re.compile(r"[^0-9.\-]")
_LEADING_NUMBER = re.compile(r"-?(\d+\.?\d*|\.\d+)")


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        return False


def coerce_charges(value: Any) -> Any:
    """Turn currency text into a float; other values pass through unchanged.

    Everything except digits, '.' and '-' is stripped and the leading numeric
    part is parsed. Text with no numeric part yields 0.0.
    """
    if not isinstance(value, str):
        return value
    match = _LEADING_NUMBER.match(_NON_NUMERIC.sub("", value))
    if not match:
        return 0.0
    return float(match.group(0))


def _require(data: Dict[str, Any], key: str, path: str) -> Any:
    if key not in data or data[key] is None:
        raise ValidationError(f"Missing required field '{path}{key}'")
    return data[key]


def _require_str(data: Dict[str, Any], key: str, path: str) -> str:
    value = _require(data, key, path)
    if not isinstance(value, str):
        raise ValidationError(f"'{path}{key}' must be a string")
    return value


def _require_number(data: Dict[str, Any], key: str, path: str) -> float:
    value = _require(data, key, path)
    if not _is_number(value):
        raise ValidationError(f"'{path}{key}' must be a number")
    return float(value)


def _require_list(data: Dict[str, Any], key: str, path: str) -> List[Any]:
    value = _require(data, key, path)
    if not isinstance(value, list):
        raise ValidationError(f"'{path}{key}' must be an array")
    return value


def _require_object(value: Any, path: str) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise ValidationError(f"'{path}' must be an object")
    return value


def _optional_str(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"'{key}' must be a string")
    return value


def _parse_data_point(raw: Any, path: str) -> UsageDataPoint:
    point = _require_object(raw, path)
    usage = []
    seen_years = set()
    for i, raw_usage in enumerate(_require_list(point, "usage", f"{path}.")):
        entry_path = f"{path}.usage[{i}]"
        entry = _require_object(raw_usage, entry_path)
        year = _require_str(entry, "year", f"{entry_path}.")
        if year in seen_years:
            raise ValidationError(f"Year '{year}' appears more than once in '{path}.usage'")
        seen_years.add(year)
        usage.append(UsageByYear(year=year, value=_require_number(entry, "value", f"{entry_path}.")))
    return UsageDataPoint(month=_require_str(point, "month", f"{path}."), usage=usage)


def _parse_chart(raw: Any, path: str) -> UsageChart:
    chart = _require_object(raw, path)
    return UsageChart(
        title=_require_str(chart, "title", f"{path}."),
        unit=_require_str(chart, "unit", f"{path}."),
        data=[
            _parse_data_point(p, f"{path}.data[{i}]")
            for i, p in enumerate(_require_list(chart, "data", f"{path}."))
        ],
    )


def _parse_line_item(raw: Any, path: str) -> LineItem:
    item = _require_object(raw, path)
    return LineItem(
        description=_require_str(item, "description", f"{path}."),
        amount=_require_number(item, "amount", f"{path}."),
    )


def normalize(raw: Any) -> ExtractedBill:
    """Validate raw provider JSON and build an ExtractedBill.

    Args:
        raw: Parsed JSON returned by a provider adapter

    Returns:
        ExtractedBill with every required field present

    Raises:
        ValidationError: If a required field is missing or any field has the wrong type
    """
    if not isinstance(raw, dict):
        raise ValidationError("Provider response must be a JSON object")

    data = dict(raw)
    if "totalCurrentCharges" in data:
        data["totalCurrentCharges"] = coerce_charges(data["totalCurrentCharges"])

    account_number = _require_str(data, "accountNumber", "")
    total = _require_number(data, "totalCurrentCharges", "")
    charts = [
        _parse_chart(c, f"usageCharts[{i}]")
        for i, c in enumerate(_require_list(data, "usageCharts", ""))
    ]
    items = [
        _parse_line_item(item, f"lineItems[{i}]")
        for i, item in enumerate(_require_list(data, "lineItems", ""))
    ]

    confidence = data.get("confidenceScore")
    if confidence is not None:
        if not _is_number(confidence):
            raise ValidationError("'confidenceScore' must be a number")
        if not 0.0 <= confidence <= 1.0:
            raise ValidationError(f"'confidenceScore' must be between 0 and 1, got {confidence}")
        confidence = float(confidence)

    return ExtractedBill(
        account_number=account_number,
        total_current_charges=total,
        usage_charts=charts,
        line_items=items,
        account_name=_optional_str(data, "accountName"),
        service_address=_optional_str(data, "serviceAddress"),
        statement_date=_optional_str(data, "statementDate"),
        service_period_start=_optional_str(data, "servicePeriodStart"),
        service_period_end=_optional_str(data, "servicePeriodEnd"),
        due_date=_optional_str(data, "dueDate"),
        confidence_score=confidence,
    )
