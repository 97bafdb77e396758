"""Hand-tuned fallback positions for known template layouts.

Positions are page fractions measured from the top-left corner and locate the
text baseline. Clear boxes are in points and extend ``padding`` left of and
below the baseline origin. Every table here is specific to one template and
must be re-measured whenever that template changes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

CALIBRATION_PADDING = 10.0


@dataclass(frozen=True)
class CalibrationEntry:
    token: str
    value_key: str
    category: str
    x_fraction: float
    y_fraction: float
    font_size: float
    clear_width: float
    clear_height: float

    def baseline(self, page_width: float, page_height: float) -> Tuple[float, float]:
        return page_width * self.x_fraction, page_height * self.y_fraction

    def clear_box(
        self,
        page_width: float,
        page_height: float,
        padding: float = CALIBRATION_PADDING,
    ) -> Tuple[float, float, float, float]:
        x, y = self.baseline(page_width, page_height)
        return (x - padding, y + padding - self.clear_height, x - padding + self.clear_width, y + padding)


@dataclass(frozen=True)
class CalibrationTemplate:
    name: str
    entries: Tuple[CalibrationEntry, ...]
    page_index: int = 0
    padding: float = CALIBRATION_PADDING


CALIBRATION_TEMPLATES: Dict[str, CalibrationTemplate] = {
    "cloudfuze-standard": CalibrationTemplate(
        name="cloudfuze-standard",
        entries=(
            CalibrationEntry("{{Company Name}}", "company", "company", 0.40, 0.10, 16.0, 400.0, 35.0),
            CalibrationEntry("{{users_count}}", "count", "count", 0.15, 0.37, 10.0, 180.0, 15.0),
            CalibrationEntry("{{users_cost}}", "user_cost", "price", 0.75, 0.32, 10.0, 120.0, 15.0),
            CalibrationEntry("{{migration type}}", "migration_type", "detail", 0.15, 0.32, 10.0, 180.0, 15.0),
            CalibrationEntry("{{price_migration}}", "migration_cost", "price", 0.75, 0.32, 10.0, 120.0, 15.0),
            CalibrationEntry("{{price_data}}", "data_cost", "price", 0.75, 0.42, 10.0, 120.0, 15.0),
            CalibrationEntry("{{Duration of months}}", "duration", "duration", 0.15, 0.47, 10.0, 180.0, 15.0),
            CalibrationEntry("{{total price}}", "price", "price", 0.75, 0.52, 12.0, 120.0, 20.0),
        ),
    ),
}


def get_calibration_template(name: Optional[str]) -> Optional[CalibrationTemplate]:
    if not name:
        return None
    return CALIBRATION_TEMPLATES.get(name.strip().lower())
