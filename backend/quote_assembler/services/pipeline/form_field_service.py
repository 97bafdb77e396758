from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import fitz

from ...utils.logging import get_logger
from .page_drawing import insert_textbox_with_fallback
from .quote_context import QuoteContext

# Tested in this order; the first category with a substring hit wins.
FIELD_CATEGORY_VOCABULARY: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("company", (
        "company", "organisation", "organization", "title", "corp", "corporation",
        "business", "firm", "enterprise", "org", "company_name", "companyname",
    )),
    ("contact", (
        "client", "customer", "contact", "name", "client_name", "customername",
        "contact_name", "fullname", "full_name", "firstname", "lastname",
    )),
    ("email", (
        "email", "e-mail", "mail", "email_address", "emailaddress", "contact_email",
        "client_email", "e_mail", "electronic_mail",
    )),
    ("count", (
        "users", "seats", "licenses", "user_count", "usercount", "seat_count",
        "seatcount", "license_count", "licensecount", "number_of_users", "numberofusers",
    )),
    ("price", (
        "total", "price", "amount", "cost", "total_price", "totalprice", "total_cost",
        "totalcost", "amount_due", "amountdue", "price_total", "pricetotal", "sum",
        "total_amount", "totalamount", "grand_total", "grandtotal",
    )),
    ("date", (
        "date", "created_date", "createddate", "issue_date", "issuedate", "quote_date",
        "quotedate", "valid_date", "validdate", "expiry_date", "expirydate", "due_date",
        "duedate", "effective_date", "effectivedate",
    )),
)

UNKNOWN_CATEGORY = "unknown"

_WIDGET_TYPE_NAMES = {
    fitz.PDF_WIDGET_TYPE_TEXT: "text",
    fitz.PDF_WIDGET_TYPE_CHECKBOX: "checkbox",
    fitz.PDF_WIDGET_TYPE_COMBOBOX: "dropdown",
    fitz.PDF_WIDGET_TYPE_LISTBOX: "optionlist",
    fitz.PDF_WIDGET_TYPE_BUTTON: "button",
    fitz.PDF_WIDGET_TYPE_RADIOBUTTON: "radio",
    fitz.PDF_WIDGET_TYPE_SIGNATURE: "signature",
}


@dataclass(frozen=True)
class FieldClassification:
    category: str
    confidence: float


@dataclass(frozen=True)
class FormFieldInfo:
    name: str
    type: str
    page_index: int
    category: str
    confidence: float
    is_read_only: bool
    is_required: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "page_index": self.page_index,
            "category": self.category,
            "confidence": round(self.confidence, 4),
            "is_read_only": self.is_read_only,
            "is_required": self.is_required,
        }


@dataclass
class FormFillReport:
    fields_found: int = 0
    fields_filled: int = 0
    filled: List[Dict[str, Any]] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    flattened: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fields_found": self.fields_found,
            "fields_filled": self.fields_filled,
            "filled": self.filled,
            "skipped": self.skipped,
            "flattened": self.flattened,
        }


def _excluded(category: str, name: str) -> bool:
    return category == "contact" and ("email" in name or "mail" in name)


def classify_field_name(field_name: str) -> FieldClassification:
    """Vocabulary category for a form field name, with a length-based confidence."""
    name = (field_name or "").strip().lower()
    if not name:
        return FieldClassification(UNKNOWN_CATEGORY, 0.0)

    for category, vocabulary in FIELD_CATEGORY_VOCABULARY:
        if _excluded(category, name):
            continue
        hits = [entry for entry in vocabulary if entry in name]
        if hits:
            longest = max(len(entry) for entry in hits)
            return FieldClassification(category, min(1.0, 2.0 * longest / len(name)))
    return FieldClassification(UNKNOWN_CATEGORY, 0.0)


_CATEGORY_VALUE_KEYS = {
    "company": "company",
    "contact": "contact",
    "email": "email",
    "count": "count",
    "price": "price",
    "date": "date",
}


def resolve_field_value(field_name: str, context: QuoteContext) -> Optional[str]:
    if field_name in context.custom_fields:
        return context.custom_fields[field_name]
    category = classify_field_name(field_name).category
    value_key = _CATEGORY_VALUE_KEYS.get(category)
    if value_key is None:
        return None
    return context.value_for(value_key)


def _widget_flags(widget: fitz.Widget) -> Tuple[bool, bool]:
    flags = int(widget.field_flags or 0)
    return bool(flags & fitz.PDF_FIELD_IS_READ_ONLY), bool(flags & fitz.PDF_FIELD_IS_REQUIRED)


def describe_fields(doc: fitz.Document) -> List[FormFieldInfo]:
    fields: List[FormFieldInfo] = []
    for page in doc:
        for widget in page.widgets() or []:
            classification = classify_field_name(widget.field_name or "")
            read_only, required = _widget_flags(widget)
            fields.append(
                FormFieldInfo(
                    name=widget.field_name or "",
                    type=_WIDGET_TYPE_NAMES.get(widget.field_type, "unknown"),
                    page_index=page.number,
                    category=classification.category,
                    confidence=classification.confidence,
                    is_read_only=read_only,
                    is_required=required,
                )
            )
    return fields


def field_statistics(fields: List[FormFieldInfo]) -> Dict[str, Any]:
    by_type: Dict[str, int] = {}
    by_category: Dict[str, int] = {}
    for info in fields:
        by_type[info.type] = by_type.get(info.type, 0) + 1
        by_category[info.category] = by_category.get(info.category, 0) + 1
    return {
        "total_fields": len(fields),
        "fields_by_type": by_type,
        "fields_by_category": by_category,
        "fillable_fields": sum(1 for info in fields if not info.is_read_only),
        "required_fields": sum(1 for info in fields if info.is_required),
    }


class FormFieldService:
    """Fills AcroForm text fields from a quote and optionally flattens the form."""

    def __init__(self, min_font_size: float = 5.5) -> None:
        self.logger = get_logger(__name__)
        self.min_font_size = min_font_size

    def fill(self, doc: fitz.Document, context: QuoteContext, flatten: bool = True) -> FormFillReport:
        report = FormFillReport()
        if not doc.is_form_pdf:
            self.logger.info("template has no form fields")
            return report

        for page in doc:
            for widget in page.widgets() or []:
                report.fields_found += 1
                name = widget.field_name or ""
                read_only, _ = _widget_flags(widget)
                if widget.field_type != fitz.PDF_WIDGET_TYPE_TEXT or read_only:
                    report.skipped.append(name)
                    continue
                value = resolve_field_value(name, context)
                if value is None:
                    report.skipped.append(name)
                    continue
                widget.field_value = value
                widget.update()
                report.fields_filled += 1
                report.filled.append({
                    "name": name,
                    "value": value,
                    "category": classify_field_name(name).category,
                    "page_index": page.number,
                })

        if flatten:
            self.flatten(doc)
            report.flattened = True

        self.logger.info(
            "form fields processed",
            found=report.fields_found,
            filled=report.fields_filled,
            flattened=report.flattened,
        )
        return report

    def flatten(self, doc: fitz.Document) -> int:
        """Redraw every widget value as static text and remove the widgets."""
        removed = 0
        for page in doc:
            pending: List[Tuple[fitz.Rect, str, float]] = []
            for widget in page.widgets() or []:
                text = self._static_text(widget)
                if text:
                    font_size = float(widget.text_fontsize or 0.0) or min(widget.rect.height * 0.7, 11.0)
                    pending.append((fitz.Rect(widget.rect), text, font_size))

            widget = page.first_widget
            while widget:
                widget = page.delete_widget(widget)
                removed += 1

            for rect, text, font_size in pending:
                inserted = insert_textbox_with_fallback(
                    page, rect, text, font_size, min(self.min_font_size, font_size)
                )
                if inserted is None:
                    self.logger.warning("flattened value did not fit", page=page.number, text=text)
        return removed

    @staticmethod
    def _static_text(widget: fitz.Widget) -> str:
        value = widget.field_value
        if widget.field_type in (fitz.PDF_WIDGET_TYPE_CHECKBOX, fitz.PDF_WIDGET_TYPE_RADIOBUTTON):
            return "X" if value not in (None, False, "", "Off") else ""
        if widget.field_type in (fitz.PDF_WIDGET_TYPE_BUTTON, fitz.PDF_WIDGET_TYPE_SIGNATURE):
            return ""
        if isinstance(value, (list, tuple)):
            return ", ".join(str(item) for item in value)
        return str(value or "")
