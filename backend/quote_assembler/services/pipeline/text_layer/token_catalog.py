from __future__ import annotations

from typing import Iterable, Tuple

from ..models import TokenPattern


def _pattern(
    name: str,
    category: str,
    variants: Iterable[str],
    value_key: str | None = None,
    *,
    case_sensitive: bool = False,
    default_font_size: float = 10.0,
) -> TokenPattern:
    return TokenPattern(
        category=category,
        variants=tuple(variants),
        case_sensitive=case_sensitive,
        value_key=value_key,
        name=name,
        default_font_size=default_font_size,
    )


# Only delimited forms ship by default; bare words such as "Company" or
# "total price" occur in ordinary template prose.
DEFAULT_TOKEN_PATTERNS: Tuple[TokenPattern, ...] = (
    _pattern(
        "Company Tokens",
        "company",
        (
            "{{Company Name}}",
            "{{Company_Name}}",
            "{{companyname}}",
            "{{company}}",
            "{Company Name}",
            "{company}",
            "[COMPANY]",
            "[COMPANY_NAME]",
        ),
        default_font_size=12.0,
    ),
    _pattern(
        "Company Constants",
        "company",
        ("COMPANY_NAME",),
        case_sensitive=True,
        default_font_size=12.0,
    ),
    _pattern(
        "Contact Tokens",
        "contact",
        (
            "{{client_name}}",
            "{{clientname}}",
            "{{client name}}",
            "{{contact_name}}",
            "{{contact name}}",
            "[CLIENT_NAME]",
        ),
    ),
    _pattern(
        "Email Tokens",
        "email",
        (
            "{{client_email}}",
            "{{client email}}",
            "{{contact_email}}",
            "{{email}}",
            "[CLIENT_EMAIL]",
        ),
    ),
    _pattern(
        "User Count Tokens",
        "count",
        (
            "{{userscount}}",
            "{{users_count}}",
            "{{usercount}}",
            "{{number_of_users}}",
            "{userscount}",
            "[USERS_COUNT]",
        ),
    ),
    _pattern(
        "Total Price Tokens",
        "price",
        (
            "{{total price}}",
            "{{total_price}}",
            "{{totalprice}}",
            "{total price}",
            "[TOTAL_PRICE]",
        ),
        default_font_size=12.0,
    ),
    _pattern(
        "User Cost Tokens",
        "price",
        ("{{users_cost}}", "{{user_cost}}", "{users_cost}", "[USERS_COST]"),
        "user_cost",
    ),
    _pattern(
        "Data Price Tokens",
        "price",
        ("{{price_data}}", "{price_data}", "[PRICE_DATA]"),
        "data_cost",
    ),
    _pattern(
        "Migration Price Tokens",
        "price",
        ("{{price_migration}}", "{price_migration}", "[PRICE_MIGRATION]"),
        "migration_cost",
    ),
    _pattern(
        "Instance Cost Tokens",
        "instance",
        (
            "{{instance cost}}",
            "{{price_instance}}",
            "{instance cost}",
            "{price_instance}",
            "[INSTANCE_COST]",
            "[PRICE_INSTANCE]",
        ),
        "instance_cost",
    ),
    _pattern(
        "Instance Count Tokens",
        "instance",
        (
            "{{instance_users}}",
            "{{instance_count}}",
            "{{number_of_instances}}",
            "{{instance}}",
            "{instance}",
            "[INSTANCE_USERS]",
        ),
        "instance",
    ),
    _pattern(
        "Instance Type Tokens",
        "instance",
        ("{{instance_type}}", "{{instancetype}}", "[INSTANCE_TYPE]"),
        "instance_type",
    ),
    _pattern(
        "Duration Tokens",
        "duration",
        ("{{Duration of months}}", "{{duration}}", "[DURATION]"),
    ),
    _pattern(
        "Migration Type Tokens",
        "detail",
        ("{{migration type}}", "{{migration_type}}", "[MIGRATION_TYPE]"),
        "migration_type",
    ),
    _pattern("Data Size Tokens", "detail", ("{{data_size}}", "{{datasize}}"), "data_size"),
    _pattern("Plan Tokens", "detail", ("{{plan_name}}", "{{plan}}"), "plan_name"),
    _pattern("Quote Id Tokens", "detail", ("{{quote_id}}", "[QUOTE_ID]"), "quote_id"),
    _pattern("Quote Date Tokens", "date", ("{{quote_date}}", "{{date}}", "[DATE]")),
    _pattern(
        "Start Date Tokens",
        "date",
        ("{{Start_date}}", "{{start date}}", "{{project_start_date}}"),
        "start_date",
    ),
    _pattern(
        "End Date Tokens",
        "date",
        ("{{End_date}}", "{{end date}}", "{{project_end_date}}"),
        "end_date",
    ),
)


def custom_patterns(literals: Iterable[str], category: str = "custom") -> Tuple[TokenPattern, ...]:
    """One pattern per literal; the literal itself doubles as the value key."""
    return tuple(
        TokenPattern(category=category, variants=(literal,), value_key=literal, name=f"Custom {literal}")
        for literal in literals
        if literal
    )
