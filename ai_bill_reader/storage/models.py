"""
Data models for bills, analysis records and AI settings.

All models serialize to the camelCase JSON used on the wire and in the
persisted key-value store.
"""

import math
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, List, Optional

# Records below this confidence are flagged for manual review.
LOW_CONFIDENCE_THRESHOLD = 0.75

DEFAULT_OLLAMA_URL = "http://localhost:11434"
DEFAULT_OLLAMA_MODEL = "llava"


class AiProvider(Enum):
    """Backends able to perform an extraction."""
    CLOUD = "cloud"  # hosted Gemini model
    LOCAL = "local"  # Ollama or any OpenAI-chat-compatible server


@dataclass(frozen=True)
class UsageByYear:
    year: str
    value: float

    def to_dict(self) -> Dict[str, Any]:
        return {"year": self.year, "value": self.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UsageByYear":
        return cls(year=data["year"], value=data["value"])


@dataclass(frozen=True)
class UsageDataPoint:
    """One month of a usage chart, with one value per year shown."""
    month: str
    usage: List[UsageByYear] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"month": self.month, "usage": [u.to_dict() for u in self.usage]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UsageDataPoint":
        return cls(
            month=data["month"],
            usage=[UsageByYear.from_dict(u) for u in data["usage"]],
        )


@dataclass(frozen=True)
class UsageChart:
    title: str
    unit: str
    data: List[UsageDataPoint] = field(default_factory=list)

    @property
    def years(self) -> List[str]:
        """Sorted distinct years across all data points."""
        return sorted({u.year for point in self.data for u in point.usage})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "unit": self.unit,
            "data": [p.to_dict() for p in self.data],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UsageChart":
        return cls(
            title=data["title"],
            unit=data["unit"],
            data=[UsageDataPoint.from_dict(p) for p in data["data"]],
        )


@dataclass(frozen=True)
class LineItem:
    """A charge on the bill. Negative amounts are payments or credits."""
    description: str
    amount: float

    def to_dict(self) -> Dict[str, Any]:
        return {"description": self.description, "amount": self.amount}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LineItem":
        return cls(description=data["description"], amount=data["amount"])


# python attribute -> wire name, for the optional scalar fields of a bill
_OPTIONAL_BILL_FIELDS = {
    "account_name": "accountName",
    "service_address": "serviceAddress",
    "statement_date": "statementDate",
    "service_period_start": "servicePeriodStart",
    "service_period_end": "servicePeriodEnd",
    "due_date": "dueDate",
    "confidence_score": "confidenceScore",
}


@dataclass(frozen=True)
class ExtractedBill:
    """Structured bill data as produced by a provider, before identity is assigned.

    Date fields hold whatever text the provider read off the bill; they are
    not parsed or normalized.
    """
    account_number: str
    total_current_charges: float
    usage_charts: List[UsageChart] = field(default_factory=list)
    line_items: List[LineItem] = field(default_factory=list)
    account_name: Optional[str] = None
    service_address: Optional[str] = None
    statement_date: Optional[str] = None
    service_period_start: Optional[str] = None
    service_period_end: Optional[str] = None
    due_date: Optional[str] = None
    confidence_score: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "accountNumber": self.account_number,
            "totalCurrentCharges": self.total_current_charges,
        }
        for attr, key in _OPTIONAL_BILL_FIELDS.items():
            value = getattr(self, attr)
            if value is not None:
                data[key] = value
        data["usageCharts"] = [c.to_dict() for c in self.usage_charts]
        data["lineItems"] = [i.to_dict() for i in self.line_items]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExtractedBill":
        """Rebuild a bill from trusted, previously serialized data.

        Provider output must go through ``core.normalizer.normalize`` instead.
        """
        optional = {attr: data.get(key) for attr, key in _OPTIONAL_BILL_FIELDS.items()}
        return cls(
            account_number=data["accountNumber"],
            total_current_charges=data["totalCurrentCharges"],
            usage_charts=[UsageChart.from_dict(c) for c in data.get("usageCharts", [])],
            line_items=[LineItem.from_dict(i) for i in data.get("lineItems", [])],
            **optional,
        )

    def with_usage_value(self, chart_index: int, month_index: int, year: str, value: float) -> "ExtractedBill":
        """Return a copy with one chart value set for a month and year.

        A year the month does not list yet is appended to it.

        Raises:
            ValueError: If an index is out of range or the value is not a finite number
        """
        if not 0 <= chart_index < len(self.usage_charts):
            raise ValueError(f"No usage chart at index {chart_index}")
        chart = self.usage_charts[chart_index]
        if not 0 <= month_index < len(chart.data):
            raise ValueError(f"Chart '{chart.title}' has no month at index {month_index}")
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            raise ValueError(f"Usage value must be a finite number, got {value!r}")

        point = chart.data[month_index]
        if any(u.year == year for u in point.usage):
            usage = [replace(u, value=value) if u.year == year else u for u in point.usage]
        else:
            usage = point.usage + [UsageByYear(year=year, value=value)]

        data = list(chart.data)
        data[month_index] = replace(point, usage=usage)
        charts = list(self.usage_charts)
        charts[chart_index] = replace(chart, data=data)
        return replace(self, usage_charts=charts)


@dataclass(frozen=True)
class BillRecord:
    """An extracted bill with its identity and analysis timestamp.

    ``id`` and ``analyzed_at`` never change after creation; the bill itself
    can be replaced through ``with_edits``.
    """
    id: str
    analyzed_at: str
    bill: ExtractedBill

    @property
    def needs_review(self) -> bool:
        score = self.bill.confidence_score
        return (1.0 if score is None else score) < LOW_CONFIDENCE_THRESHOLD

    def with_edits(self, **changes: Any) -> "BillRecord":
        """Return a copy with bill fields replaced.

        Raises:
            ValueError: If a change targets the identity or an unknown field
        """
        for name in ("id", "analyzed_at"):
            if name in changes:
                raise ValueError(f"'{name}' cannot be edited")
        known = {f.name for f in fields(ExtractedBill)}
        unknown = set(changes) - known
        if unknown:
            raise ValueError(f"Unknown bill fields: {sorted(unknown)}")
        return replace(self, bill=replace(self.bill, **changes))

    def with_usage_value(self, chart_index: int, month_index: int, year: str, value: float) -> "BillRecord":
        """Return a copy with one usage chart value corrected."""
        return replace(self, bill=self.bill.with_usage_value(chart_index, month_index, year, value))

    def to_dict(self) -> Dict[str, Any]:
        data = self.bill.to_dict()
        data["id"] = self.id
        data["analyzedAt"] = self.analyzed_at
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BillRecord":
        return cls(
            id=data["id"],
            analyzed_at=data["analyzedAt"],
            bill=ExtractedBill.from_dict(data),
        )


@dataclass(frozen=True)
class AiSettings:
    """Which provider to use and how to reach it."""
    provider: AiProvider = AiProvider.CLOUD
    gemini_api_key: str = ""
    ollama_url: str = DEFAULT_OLLAMA_URL
    ollama_model: str = DEFAULT_OLLAMA_MODEL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider.value,
            "geminiApiKey": self.gemini_api_key,
            "ollamaUrl": self.ollama_url,
            "ollamaModel": self.ollama_model,
        }
