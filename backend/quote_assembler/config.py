from __future__ import annotations

import os
from pathlib import Path
from typing import Any


def _parse_cors_origins() -> str | list[str]:
    default = "http://localhost:3000,http://localhost:5173,http://127.0.0.1:3000,http://127.0.0.1:5173"
    raw = os.getenv("QUOTE_ASSEMBLER_CORS_ORIGINS", default)
    if raw.strip() == "*":
        return "*"
    origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
    return origins or "*"


class BaseConfig:
    BASE_DIR = Path(os.getenv("QUOTE_ASSEMBLER_BASE_DIR", Path.cwd()))  # Base directory for logs
    SECRET_KEY = os.getenv("QUOTE_ASSEMBLER_SECRET_KEY", "dev-secret-key")
    JSON_SORT_KEYS = False
    MAX_TEMPLATE_BYTES = int(os.getenv("QUOTE_ASSEMBLER_MAX_TEMPLATE_BYTES", str(100 * 1024 * 1024)))
    MAX_CONTENT_LENGTH = MAX_TEMPLATE_BYTES + 5 * 1024 * 1024  # template plus JSON payloads
    CORS_ORIGINS = _parse_cors_origins()
    LOG_LEVEL = os.getenv("QUOTE_ASSEMBLER_LOG_LEVEL", "INFO")
    ENABLE_PIPELINE_FILE_LOG = (
        os.getenv("QUOTE_ASSEMBLER_PIPELINE_FILE_LOG", "true").lower() == "true"
    )
    ASSEMBLY_TIMEOUT_MS = int(os.getenv("QUOTE_ASSEMBLER_TIMEOUT_MS", "30000"))
    LINE_TOLERANCE = float(os.getenv("QUOTE_ASSEMBLER_LINE_TOLERANCE", "5"))
    BATCH_MAX_WORKERS = int(os.getenv("QUOTE_ASSEMBLER_BATCH_MAX_WORKERS", "3"))
    BATCH_THROTTLE_SECONDS = float(os.getenv("QUOTE_ASSEMBLER_BATCH_THROTTLE_SECONDS", "0.1"))
    DEFAULT_CALIBRATION_TEMPLATE = os.getenv("QUOTE_ASSEMBLER_CALIBRATION_TEMPLATE") or None
    SUMMARY_DEFAULTS: dict[str, Any] = {
        "vendor_name": os.getenv("QUOTE_ASSEMBLER_VENDOR_NAME", "CloudFuze"),
        "vendor_tagline": os.getenv("QUOTE_ASSEMBLER_VENDOR_TAGLINE", "Cloud Migration Services"),
        "theme": os.getenv("QUOTE_ASSEMBLER_SUMMARY_THEME", "blue"),
        "include_terms": os.getenv("QUOTE_ASSEMBLER_SUMMARY_TERMS", "true").lower() == "true",
        "validity_days": int(os.getenv("QUOTE_ASSEMBLER_QUOTE_VALIDITY_DAYS", "30")),
    }


class TestConfig(BaseConfig):
    TESTING = True
    BASE_DIR = Path("/tmp/quote-assembler-test")
    LOG_LEVEL = "DEBUG"
    ENABLE_PIPELINE_FILE_LOG = False


class DevConfig(BaseConfig):
    DEBUG = True
    LOG_LEVEL = "DEBUG"


config_by_name = {
    "development": DevConfig,
    "testing": TestConfig,
    "production": BaseConfig,
}


def get_config(config_name: str | None = None):
    if not config_name:
        config_name = os.getenv("QUOTE_ASSEMBLER_ENV", "development")
    return config_by_name.get(config_name.lower(), BaseConfig)


def config_as_mapping(config_class) -> dict[str, Any]:
    """Upper-case attributes of a config class, as Flask would load them."""
    return {key: getattr(config_class, key) for key in dir(config_class) if key.isupper()}
