import os

import click
from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from quotedesk.config import Config
from quotedesk.db import close_db, get_db, init_db
from quotedesk.db_migrations import register_db_cli
from quotedesk.negotiation.change_feed import ChangeFeed
from quotedesk.observability import (
    configure_json_logging,
    ensure_request_id,
    mark_request_start,
    metrics_snapshot,
    observe_response,
)


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)
    configure_json_logging(app)

    app.extensions["quotedesk_change_feed"] = ChangeFeed()

    _ensure_database_dir(app)
    _register_error_handlers(app)
    _register_blueprints(app)
    _register_health(app)
    register_db_cli(app)
    _register_quotes_cli(app)
    _maybe_init_schema(app)

    app.teardown_appcontext(close_db)
    return app


def _ensure_database_dir(app: Flask) -> None:
    database_dir = app.config.get("DATABASE_DIR")
    if database_dir:
        os.makedirs(database_dir, exist_ok=True)


def _maybe_init_schema(app: Flask) -> None:
    auto_init = bool(app.config.get("DB_AUTO_INIT", False))
    if app.testing:
        # Tests stay self-contained and do not depend on running migrations first.
        auto_init = True
    if not auto_init:
        return

    flask_env = (os.environ.get("FLASK_ENV", "development") or "development").strip().lower()
    if not app.testing and flask_env != "development":
        app.logger.warning("DB_AUTO_INIT ignored outside development.")
        return

    with app.app_context():
        init_db()


def _register_blueprints(app: Flask) -> None:
    from quotedesk.routes.quote_routes import quotes_bp

    app.register_blueprint(quotes_bp)


def _register_error_handlers(app: Flask) -> None:
    from quotedesk.errors import AppError, SystemError

    @app.before_request
    def _ensure_request_id() -> None:
        ensure_request_id()
        mark_request_start()

    @app.after_request
    def _append_request_id(response):
        response.headers["X-Request-Id"] = ensure_request_id()
        return observe_response(response)

    def _log_error(error: AppError, request_id: str) -> None:
        log_method = app.logger.error if error.critical else app.logger.warning
        log_method(
            "application_error",
            extra={
                "request_id": request_id,
                "error_code": error.code,
                "http_status": error.http_status,
                "message_key": error.message_key,
                "details": error.details,
                "request_path": request.path,
                "http_method": request.method,
            },
            exc_info=error.critical,
        )

    @app.errorhandler(AppError)
    def _handle_app_error(exc: AppError):
        request_id = ensure_request_id()
        _log_error(exc, request_id)
        return jsonify(exc.to_response_payload(request_id)), exc.http_status

    @app.errorhandler(Exception)
    def _handle_unexpected(exc: Exception):
        if isinstance(exc, HTTPException):
            return exc

        request_id = ensure_request_id()
        mapped = SystemError(
            code="unexpected_error",
            message_key="unexpected_error",
            http_status=500,
            critical=True,
            details=str(exc),
        )
        app.logger.exception(
            "unexpected_exception",
            extra={
                "request_id": request_id,
                "error_code": mapped.code,
                "request_path": request.path,
                "http_method": request.method,
            },
        )
        return jsonify(mapped.to_response_payload(request_id)), mapped.http_status


def _register_health(app: Flask) -> None:
    @app.route("/health")
    def health():
        db_path = app.config.get("DB_PATH") or "unknown"
        backend = "postgres" if str(db_path).startswith("postgres") else "sqlite"
        payload = {
            "status": "ok",
            "db": backend,
            "env": os.environ.get("FLASK_ENV", "development"),
            "metrics": metrics_snapshot(),
            "change_feed": {
                "subscribers": app.extensions["quotedesk_change_feed"].subscriber_count,
            },
        }
        try:
            get_db().execute("SELECT 1").fetchone()
        except Exception:  # noqa: BLE001
            app.logger.warning("health_db_unreachable")
            payload["status"] = "degraded"
        return payload, 200


DEMO_PROFILES = (
    ("demo-customer", "Fazenda Boa Vista", "customer"),
    ("demo-vendor", "AgroPecas Distribuidora", "vendor"),
    ("demo-admin", "Store Admin", "admin"),
    ("demo-oversight", "Platform Oversight", "super_admin"),
)

DEMO_QUOTES = (
    (
        "Seeder bearings and belts",
        [
            {"product_name": "Seeder disc bearing 6204", "quantity": 12, "price": "18.90"},
            {"product_name": "V-belt B-68", "quantity": 4, "price": "42.50"},
        ],
    ),
    (
        "Tractor hydraulic filters",
        [
            {"product_name": "Hydraulic filter HF-6177", "quantity": 3, "price": "129.00"},
        ],
    ),
)


def _register_quotes_cli(app: Flask) -> None:
    @app.cli.group("quotes")
    def quotes_group() -> None:
        """Quote negotiation maintenance commands."""

    @quotes_group.command("init-db")
    def quotes_init_db() -> None:
        init_db()
        click.echo("Quote schema ready.")

    @quotes_group.command("seed-demo")
    def quotes_seed_demo() -> None:
        from quotedesk.domain.contracts import ActorIdentity
        from quotedesk.infrastructure.quote_store import QuoteStore
        from quotedesk.negotiation.quote_requests import QuoteRequestService, parse_quote_request

        init_db()
        store = QuoteStore(
            get_db(),
            change_feed=app.extensions["quotedesk_change_feed"],
            quote_number_prefix=app.config.get("QUOTE_NUMBER_PREFIX", "QT"),
        )
        for user_id, full_name, role in DEMO_PROFILES:
            store.upsert_profile(user_id=user_id, full_name=full_name, role=role)

        service = QuoteRequestService(store)
        customer = ActorIdentity(actor_id="demo-customer", actor_role="customer")
        for notes, items in DEMO_QUOTES:
            request_input = parse_quote_request({"vendor_id": "demo-vendor", "notes": notes, "items": items})
            output = service.create_quote_request(customer, request_input)
            click.echo(f"Created {output.payload['quote_number']} ({output.payload['total_amount']}).")
