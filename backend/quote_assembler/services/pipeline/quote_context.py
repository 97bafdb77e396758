from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ...utils.exceptions import ValidationError
from ...utils.time import long_date

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

REQUIRED_FIELDS = ("company", "contact_name", "contact_email")


def format_currency(amount: float) -> str:
    """``$`` plus grouped thousands; cents only when the amount has them."""
    rounded = round(float(amount), 2)
    if rounded == int(rounded):
        return f"${int(rounded):,}"
    return f"${rounded:,.2f}"


def format_count(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def _parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    for candidate in (text, text.replace("Z", "+00:00")):
        try:
            return datetime.fromisoformat(candidate).date()
        except ValueError:
            continue
    for fmt in ("%m/%d/%Y", "%Y-%m-%d", "%B %d, %Y"):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise ValidationError([f"unrecognised date {value!r}"])


def _number(value: Any, name: str) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError([f"{name} must be numeric, got {value!r}"]) from exc


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class CostBreakdown:
    user_cost: Optional[float] = None
    data_cost: Optional[float] = None
    migration_cost: Optional[float] = None
    instance_cost: Optional[float] = None
    total_cost: Optional[float] = None

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any] | None) -> "CostBreakdown":
        payload = payload or {}
        return cls(
            user_cost=_number(payload.get("user_cost", payload.get("userCost")), "user_cost"),
            data_cost=_number(payload.get("data_cost", payload.get("dataCost")), "data_cost"),
            migration_cost=_number(
                payload.get("migration_cost", payload.get("migrationCost")), "migration_cost"
            ),
            instance_cost=_number(
                payload.get("instance_cost", payload.get("instanceCost")), "instance_cost"
            ),
            total_cost=_number(payload.get("total_cost", payload.get("totalCost")), "total_cost"),
        )

    def to_dict(self) -> Dict[str, Optional[float]]:
        return {
            "user_cost": self.user_cost,
            "data_cost": self.data_cost,
            "migration_cost": self.migration_cost,
            "instance_cost": self.instance_cost,
            "total_cost": self.total_cost,
        }


@dataclass(frozen=True)
class QuoteContext:
    """Everything the assembler knows about one priced quote. Read-only."""

    company: Optional[str] = None
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    user_count: Optional[float] = None
    instance_count: Optional[float] = None
    duration_months: Optional[float] = None
    data_size_gb: Optional[float] = None
    migration_type: Optional[str] = None
    instance_type: Optional[str] = None
    plan_name: Optional[str] = None
    quote_id: Optional[str] = None
    quote_date: Optional[date] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    costs: CostBreakdown = field(default_factory=CostBreakdown)
    custom_fields: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "QuoteContext":
        """Accept flat snake_case payloads and the nested camelCase quote shape.

        The nested shape carries ``configuration`` (users, instances, duration,
        data size, migration/instance type) and ``calculation`` (costs and tier).
        """
        if not isinstance(payload, Mapping):
            raise ValidationError(["quote payload must be an object"])

        configuration = payload.get("configuration") or {}
        calculation = payload.get("calculation") or {}
        tier = calculation.get("tier") or {}

        def pick(*keys: str, sources=(payload, configuration)) -> Any:
            for source in sources:
                for key in keys:
                    if key in source and source[key] is not None:
                        return source[key]
            return None

        cost_source = dict(calculation)
        cost_source.update(payload.get("costs") or {})
        custom = payload.get("custom_fields") or payload.get("customFields") or {}

        return cls(
            company=_text(pick("company", "company_name", "companyName")),
            contact_name=_text(pick("contact_name", "contactName", "clientName", "client_name")),
            contact_email=_text(pick("contact_email", "contactEmail", "clientEmail", "client_email")),
            user_count=_number(pick("user_count", "userCount", "numberOfUsers"), "user_count"),
            instance_count=_number(
                pick("instance_count", "instanceCount", "numberOfInstances"), "instance_count"
            ),
            duration_months=_number(pick("duration_months", "duration", "durationMonths"), "duration"),
            data_size_gb=_number(pick("data_size_gb", "dataSizeGB", "dataSizeGb"), "data_size_gb"),
            migration_type=_text(pick("migration_type", "migrationType")),
            instance_type=_text(pick("instance_type", "instanceType")),
            plan_name=_text(pick("plan_name", "planName") or tier.get("name")),
            quote_id=_text(pick("quote_id", "quoteId", "id")),
            quote_date=_parse_date(pick("quote_date", "quoteDate", "createdAt", "created_at")),
            start_date=_parse_date(pick("start_date", "startDate")),
            end_date=_parse_date(pick("end_date", "endDate")),
            costs=CostBreakdown.from_dict(cost_source),
            custom_fields={str(key): str(value) for key, value in dict(custom).items()},
        )

    def value_for(self, key: str) -> Optional[str]:
        """Formatted replacement text for a value key, or ``None`` if undefined."""
        resolver = _RESOLVERS.get(key)
        if resolver is None:
            return self.custom_fields.get(key)
        return resolver(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "company": self.company,
            "contact_name": self.contact_name,
            "contact_email": self.contact_email,
            "user_count": self.user_count,
            "instance_count": self.instance_count,
            "duration_months": self.duration_months,
            "data_size_gb": self.data_size_gb,
            "migration_type": self.migration_type,
            "instance_type": self.instance_type,
            "plan_name": self.plan_name,
            "quote_id": self.quote_id,
            "quote_date": self.quote_date.isoformat() if self.quote_date else None,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "costs": self.costs.to_dict(),
            "custom_fields": dict(self.custom_fields),
        }


def _money(value: Optional[float]) -> Optional[str]:
    return format_currency(value) if value is not None else None


def _count(value: Optional[float]) -> Optional[str]:
    return format_count(value) if value is not None else None


def _short_date(value: Optional[date]) -> Optional[str]:
    return value.strftime("%m/%d/%Y") if value else None


_RESOLVERS = {
    "company": lambda ctx: ctx.company,
    "contact": lambda ctx: ctx.contact_name,
    "email": lambda ctx: ctx.contact_email,
    "count": lambda ctx: _count(ctx.user_count),
    "instance": lambda ctx: _count(ctx.instance_count),
    "duration": lambda ctx: _count(ctx.duration_months),
    "data_size": lambda ctx: _count(ctx.data_size_gb),
    "migration_type": lambda ctx: ctx.migration_type,
    "instance_type": lambda ctx: ctx.instance_type,
    "plan_name": lambda ctx: ctx.plan_name,
    "quote_id": lambda ctx: ctx.quote_id,
    "price": lambda ctx: _money(ctx.costs.total_cost),
    "user_cost": lambda ctx: _money(ctx.costs.user_cost),
    "data_cost": lambda ctx: _money(ctx.costs.data_cost),
    "migration_cost": lambda ctx: _money(ctx.costs.migration_cost),
    "instance_cost": lambda ctx: _money(ctx.costs.instance_cost),
    "date": lambda ctx: long_date(ctx.quote_date) if ctx.quote_date else None,
    "start_date": lambda ctx: _short_date(ctx.start_date),
    "end_date": lambda ctx: _short_date(ctx.end_date),
}


def validate_quote_context(context: QuoteContext) -> Tuple[List[str], List[str]]:
    """Return ``(errors, warnings)``; errors block assembly, warnings do not."""
    errors: List[str] = []
    warnings: List[str] = []

    for name in REQUIRED_FIELDS:
        if not getattr(context, name):
            errors.append(f"{name} is required")

    if context.user_count is not None and context.user_count <= 0:
        errors.append("user_count must be greater than 0")
    for name in ("instance_count", "duration_months", "data_size_gb"):
        value = getattr(context, name)
        if value is not None and value < 0:
            errors.append(f"{name} must not be negative")
    for name, value in context.costs.to_dict().items():
        if value is not None and value < 0:
            errors.append(f"{name} must not be negative")

    if context.contact_email and not _EMAIL_RE.match(context.contact_email):
        warnings.append("contact_email format may be invalid")
    if context.duration_months is not None and 0 <= context.duration_months < 1:
        warnings.append("duration_months should be at least 1")
    if context.costs.total_cost is None:
        warnings.append("total_cost is missing; price tokens will not be replaced")
    elif context.costs.total_cost == 0:
        warnings.append("total_cost is 0")

    return errors, warnings
