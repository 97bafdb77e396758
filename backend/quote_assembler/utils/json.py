from __future__ import annotations

from typing import Any

import orjson
from flask.json.provider import DefaultJSONProvider


class ORJSONProvider(DefaultJSONProvider):
    """Flask JSON provider that uses orjson for fast serialization."""

    def dumps(self, obj: Any, *, option: int | None = None, **kwargs: Any) -> str:
        opts = (option or orjson.OPT_INDENT_2) | orjson.OPT_NON_STR_KEYS
        return orjson.dumps(obj, option=opts).decode()

    def loads(self, s: str | bytes | bytearray, **kwargs: Any) -> Any:
        return orjson.loads(s)


def dumps_report(payload: Any, *, pretty: bool = True) -> str:
    """Serialize an assembly report; non-native values fall back to ``str``."""
    option = orjson.OPT_INDENT_2 if pretty else 0
    return orjson.dumps(payload, option=option | orjson.OPT_NON_STR_KEYS, default=str).decode()
