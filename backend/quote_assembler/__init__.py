from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv
from flask import Flask, jsonify

load_dotenv(Path.cwd() / ".env")

from .config import get_config
from .extensions import init_extensions
from .utils.exceptions import ExtractionError, ValidationError
from .utils.json import ORJSONProvider
from .utils.logging import configure_logging, configure_pipeline_logging


def create_app(config_name: str | None = None) -> Flask:
    config_class = get_config(config_name)
    app = Flask(__name__)
    app.config.from_object(config_class)

    app.json = ORJSONProvider(app)

    configure_logging(app)
    if app.config.get("ENABLE_PIPELINE_FILE_LOG", True):
        configure_pipeline_logging(app)
    init_extensions(app)

    from .api import register_blueprints
    register_blueprints(app)

    register_error_handlers(app)

    from .services.pipeline.pipeline_orchestrator import AssemblyOrchestrator
    orchestrator = AssemblyOrchestrator()
    app.logger.info(f"Assembly orchestrator initialized with {len(orchestrator.stage_handlers)} stages")

    return app


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        return jsonify({"error": "Invalid input", "details": error.errors}), 400

    @app.errorhandler(ExtractionError)
    def handle_extraction_error(error: ExtractionError):
        return jsonify({"error": "Unreadable text layer", "details": [str(error)]}), 422

    @app.errorhandler(404)
    def handle_not_found(error):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(413)
    def handle_too_large(error):
        return jsonify({"error": "Upload too large"}), 413

    @app.errorhandler(500)
    def handle_server_error(error):
        app.logger.exception("Unhandled server error")
        return jsonify({"error": "Internal server error"}), 500
