from __future__ import annotations

from flask_cors import CORS


cors = CORS()


def init_extensions(app) -> None:
    cors.init_app(app, resources={r"/api/*": {"origins": app.config.get("CORS_ORIGINS", "*")}})
