from __future__ import annotations

import random
import string
from datetime import date, timedelta
from typing import Dict, List, Optional, Tuple

import fitz

from ...utils.logging import get_logger
from ...utils.time import long_date, utc_now
from .models import Color, SummaryOptions
from .quote_context import QuoteContext, format_count, format_currency

THEMES: Dict[str, Dict[str, str]] = {
    "blue": {"primary": "#2563eb", "secondary": "#1e40af", "accent": "#3b82f6"},
    "green": {"primary": "#059669", "secondary": "#047857", "accent": "#10b981"},
    "purple": {"primary": "#7c3aed", "secondary": "#6d28d9", "accent": "#8b5cf6"},
    "gray": {"primary": "#374151", "secondary": "#1f2937", "accent": "#6b7280"},
}

TEXT_COLOR: Color = (0.12, 0.16, 0.22)
MUTED_COLOR: Color = (0.42, 0.45, 0.5)
ROW_SHADE: Color = (248 / 255, 249 / 255, 250 / 255)
WHITE: Color = (1.0, 1.0, 1.0)

PAGE_WIDTH = 612.0
PAGE_HEIGHT = 792.0
MARGIN = 48.0

_ID_ALPHABET = string.ascii_uppercase + string.digits


def _hex_color(value: str) -> Color:
    raw = value.lstrip("#")
    return tuple(int(raw[i:i + 2], 16) / 255.0 for i in (0, 2, 4))  # type: ignore[return-value]


def theme_colors(name: str) -> Dict[str, Color]:
    palette = THEMES.get((name or "").lower(), THEMES["blue"])
    return {key: _hex_color(value) for key, value in palette.items()}


def generate_quote_id(rng: Optional[random.Random] = None) -> str:
    rng = rng or random.SystemRandom()
    first = "".join(rng.choice(_ID_ALPHABET) for _ in range(5))
    second = "".join(rng.choice(_ID_ALPHABET) for _ in range(5))
    return f"QTE-{first}-{second}"


def _or_na(value: Optional[str]) -> str:
    return value if value else "N/A"


class QuoteSummaryService:
    """Renders the one-page pricing summary that gets embedded into templates."""

    def __init__(self, options: SummaryOptions | None = None, rng: random.Random | None = None) -> None:
        self.logger = get_logger(__name__)
        self.options = options or SummaryOptions()
        self.rng = rng

    def generate(self, context: QuoteContext, options: SummaryOptions | None = None) -> bytes:
        options = options or self.options
        colors = theme_colors(options.theme)
        quote_id = context.quote_id or generate_quote_id(self.rng)
        issued = context.quote_date or utc_now().date()

        doc = fitz.open()
        try:
            page = doc.new_page(width=PAGE_WIDTH, height=PAGE_HEIGHT)
            y = self._header(page, options, colors, quote_id, issued)
            y = self._client_section(page, context, colors, y)
            y = self._table(
                page,
                "Configuration Details",
                ("Configuration Item", "Value"),
                self._configuration_rows(context),
                colors,
                y,
            )
            y = self._table(
                page,
                "Cost Breakdown",
                ("Cost Item", "Amount"),
                self._cost_rows(context),
                colors,
                y,
            )
            y = self._total_row(page, context, colors, y)
            if options.include_terms:
                y = self._terms(page, options, colors, y, issued)
            self._footer(page, options, colors)
            doc.set_metadata({
                "title": f"Quote {quote_id}",
                "author": options.vendor_name,
                "subject": f"Quote for {_or_na(context.company)}",
            })
            payload = doc.tobytes(garbage=3, deflate=True)
        finally:
            doc.close()

        self.logger.info("quote summary generated", quote_id=quote_id, size=len(payload))
        return payload

    def _header(
        self,
        page: fitz.Page,
        options: SummaryOptions,
        colors: Dict[str, Color],
        quote_id: str,
        issued: date,
    ) -> float:
        page.insert_text((MARGIN, 70), options.vendor_name, fontsize=22, fontname="hebo", color=colors["primary"])
        page.insert_text((MARGIN, 88), options.vendor_tagline, fontsize=10, fontname="helv", color=MUTED_COLOR)

        badge = fitz.Rect(PAGE_WIDTH - MARGIN - 150, 46, PAGE_WIDTH - MARGIN, 106)
        page.draw_rect(badge, color=None, fill=colors["primary"])
        page.insert_textbox(fitz.Rect(badge.x0, badge.y0 + 6, badge.x1, badge.y0 + 24), "QUOTE",
                            fontsize=14, fontname="hebo", color=WHITE, align=1)
        page.insert_textbox(fitz.Rect(badge.x0, badge.y0 + 26, badge.x1, badge.y0 + 40), quote_id,
                            fontsize=9, fontname="helv", color=WHITE, align=1)
        page.insert_textbox(fitz.Rect(badge.x0, badge.y0 + 40, badge.x1, badge.y1), long_date(issued),
                            fontsize=9, fontname="helv", color=WHITE, align=1)
        page.draw_line((MARGIN, 120), (PAGE_WIDTH - MARGIN, 120), color=colors["accent"], width=1)
        return 145.0

    def _section_title(self, page: fitz.Page, title: str, colors: Dict[str, Color], y: float) -> float:
        page.insert_text((MARGIN, y), title, fontsize=13, fontname="hebo", color=colors["primary"])
        return y + 16

    def _client_section(self, page: fitz.Page, context: QuoteContext, colors: Dict[str, Color], y: float) -> float:
        y = self._section_title(page, "Client Information", colors, y)
        rows = [
            f"Company: {_or_na(context.company)}",
            f"Contact: {_or_na(context.contact_name)}",
            f"Email: {_or_na(context.contact_email)}",
        ]
        if context.plan_name:
            rows.append(f"Plan: {context.plan_name}")
        for row in rows:
            page.insert_text((MARGIN + 8, y), row, fontsize=10, fontname="helv", color=TEXT_COLOR)
            y += 14
        return y + 12

    @staticmethod
    def _configuration_rows(context: QuoteContext) -> List[Tuple[str, str]]:
        def count(value: Optional[float], suffix: str = "") -> str:
            return f"{format_count(value)}{suffix}" if value is not None else "N/A"

        return [
            ("Migration Type", _or_na(context.migration_type)),
            ("Number of Users", count(context.user_count)),
            ("Instance Type", _or_na(context.instance_type)),
            ("Number of Instances", count(context.instance_count)),
            ("Duration", count(context.duration_months, " months")),
            ("Data Size", count(context.data_size_gb, " GB")),
        ]

    @staticmethod
    def _cost_rows(context: QuoteContext) -> List[Tuple[str, str]]:
        def money(value: Optional[float]) -> str:
            return format_currency(value) if value is not None else "N/A"

        costs = context.costs
        return [
            ("User Costs", money(costs.user_cost)),
            ("Data Costs", money(costs.data_cost)),
            ("Migration Cost", money(costs.migration_cost)),
            ("Instance Cost", money(costs.instance_cost)),
        ]

    def _table(
        self,
        page: fitz.Page,
        title: str,
        headers: Tuple[str, str],
        rows: List[Tuple[str, str]],
        colors: Dict[str, Color],
        y: float,
    ) -> float:
        y = self._section_title(page, title, colors, y)
        right = PAGE_WIDTH - MARGIN
        value_x = right - 150

        page.draw_rect(fitz.Rect(MARGIN, y - 4, right, y + 14), color=None, fill=colors["primary"])
        page.insert_text((MARGIN + 8, y + 9), headers[0], fontsize=10, fontname="hebo", color=WHITE)
        page.insert_text((value_x, y + 9), headers[1], fontsize=10, fontname="hebo", color=WHITE)
        y += 14

        for index, (label, value) in enumerate(rows):
            if index % 2 == 0:
                page.draw_rect(fitz.Rect(MARGIN, y, right, y + 16), color=None, fill=ROW_SHADE)
            page.insert_text((MARGIN + 8, y + 11), label, fontsize=10, fontname="helv", color=TEXT_COLOR)
            page.insert_text((value_x, y + 11), value, fontsize=10, fontname="helv", color=TEXT_COLOR)
            y += 16
        return y + 18

    def _total_row(self, page: fitz.Page, context: QuoteContext, colors: Dict[str, Color], y: float) -> float:
        right = PAGE_WIDTH - MARGIN
        total = context.costs.total_cost
        page.draw_rect(fitz.Rect(MARGIN, y - 6, right, y + 18), color=None, fill=colors["secondary"])
        page.insert_text((MARGIN + 8, y + 10), "Total Cost", fontsize=12, fontname="hebo", color=WHITE)
        page.insert_text(
            (right - 150, y + 10),
            format_currency(total) if total is not None else "N/A",
            fontsize=12,
            fontname="hebo",
            color=WHITE,
        )
        return y + 44

    def _terms(
        self,
        page: fitz.Page,
        options: SummaryOptions,
        colors: Dict[str, Color],
        y: float,
        issued: date,
    ) -> float:
        y = self._section_title(page, "Terms and Conditions", colors, y)
        valid_until = issued + timedelta(days=options.validity_days)
        terms = [
            f"1. This quote is valid for {options.validity_days} days, until {long_date(valid_until)}.",
            "2. Prices are subject to change without notice.",
            "3. Payment terms: Net 30 days.",
            "4. All services are subject to our standard terms of service.",
            "5. This quote does not include taxes, which will be added as applicable.",
        ]
        for term in terms:
            page.insert_text((MARGIN, y), term, fontsize=8.5, fontname="helv", color=TEXT_COLOR)
            y += 12
        return y + 8

    def _footer(self, page: fitz.Page, options: SummaryOptions, colors: Dict[str, Color]) -> None:
        page.draw_line(
            (MARGIN, PAGE_HEIGHT - 40), (PAGE_WIDTH - MARGIN, PAGE_HEIGHT - 40), color=colors["primary"], width=0.5
        )
        page.insert_text(
            (MARGIN, PAGE_HEIGHT - 26),
            f"{options.vendor_name} | {options.vendor_tagline}",
            fontsize=8,
            fontname="helv",
            color=MUTED_COLOR,
        )
        page.insert_text((PAGE_WIDTH - MARGIN - 50, PAGE_HEIGHT - 26), "Page 1 of 1", fontsize=8,
                         fontname="helv", color=MUTED_COLOR)
