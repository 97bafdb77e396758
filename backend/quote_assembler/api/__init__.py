from __future__ import annotations

from flask import Blueprint, Flask, jsonify

from . import assembly_routes


def register_blueprints(app: Flask) -> None:
    api_bp = Blueprint("api", __name__, url_prefix="/api")

    @api_bp.get("/health")
    def health():
        return jsonify({"status": "ok"})

    assembly_routes.init_app(api_bp)
    app.register_blueprint(api_bp)
