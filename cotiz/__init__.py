import os

from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException

from cotiz.config import Config
from cotiz.core import get_event_bus
from cotiz.db import close_db, init_db
from cotiz.db_migrations import register_db_cli
from cotiz.errors import AppError, SystemError
from cotiz.observability import (
    configure_json_logging,
    ensure_request_id,
    mark_request_start,
    metrics_snapshot,
    observe_response,
    prometheus_metrics_text,
)


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)
    configure_json_logging(app)

    _ensure_database_dir(app)
    _register_request_hooks(app)
    _register_error_handlers(app)
    _register_auth(app)
    _register_blueprints(app)
    _register_event_handlers(app)
    _register_health(app)
    register_db_cli(app)
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
        # Testes criam o schema sem depender de migration externa.
        auto_init = True
    if not auto_init:
        return

    flask_env = (os.environ.get("FLASK_ENV", "development") or "development").strip().lower()
    if not app.testing and flask_env != "development":
        app.logger.warning("DB_AUTO_INIT ignorado fora de development.")
        return

    with app.app_context():
        init_db()


def _register_blueprints(app: Flask) -> None:
    from cotiz.routes.approval_routes import approval_bp
    from cotiz.routes.quote_routes import quote_bp

    app.register_blueprint(approval_bp)
    app.register_blueprint(quote_bp)


def _register_auth(app: Flask) -> None:
    from cotiz.auth import register_auth

    register_auth(app)


def _register_event_handlers(app: Flask) -> None:
    from cotiz.contexts.notifications.application.notifier import register_notification_handlers
    from cotiz.routes.approval_routes import LEVEL_STORE

    LEVEL_STORE.configure(ttl_seconds=int(app.config.get("APPROVAL_LEVEL_CACHE_TTL_SECONDS", 30)))
    event_bus = get_event_bus()
    LEVEL_STORE.register_event_handlers(event_bus)
    register_notification_handlers(event_bus)


def _register_request_hooks(app: Flask) -> None:
    @app.before_request
    def _start_request() -> None:
        ensure_request_id()
        mark_request_start()
        # Sessao tem prioridade; os cabecalhos servem a integracoes e testes.
        g.client_id = (request.headers.get("X-Client-Id") or "").strip() or None
        g.actor_id = (request.headers.get("X-User-Id") or "").strip() or None
        g.actor_role = (request.headers.get("X-User-Role") or "").strip().lower() or None

    @app.after_request
    def _finish_request(response):
        response.headers["X-Request-Id"] = ensure_request_id()
        return observe_response(response)


def _error_response(error: AppError):
    request_id = ensure_request_id()
    return jsonify(error.to_response_payload(request_id)), error.http_status


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(AppError)
    def _handle_app_error(exc: AppError):
        context = {
            "error_code": exc.code,
            "http_status": exc.http_status,
            "message_key": exc.message_key,
            "details": exc.details,
            "request_path": request.path,
            "http_method": request.method,
        }
        if exc.critical:
            app.logger.error("application_error", extra=context, exc_info=True)
        else:
            app.logger.warning("application_error", extra=context)
        return _error_response(exc)

    @app.errorhandler(Exception)
    def _handle_unexpected(exc: Exception):
        if isinstance(exc, HTTPException):
            return exc
        app.logger.exception(
            "unexpected_exception",
            extra={"exception_type": type(exc).__name__, "request_path": request.path, "http_method": request.method},
        )
        # Detalhes ficam so no log; o corpo da resposta nao expoe a excecao.
        return _error_response(SystemError(code="unexpected_error"))


def _register_health(app: Flask) -> None:
    @app.route("/health")
    def health():
        from cotiz.db import get_db, table_exists

        db_path = app.config.get("DB_PATH") or "unknown"
        backend = "postgres" if str(db_path).startswith("postgres") else "sqlite"
        payload = {
            "status": "ok",
            "db": backend,
            "env": app.config.get("ENV", "unknown"),
            "metrics": {
                "http": metrics_snapshot(),
            },
        }
        try:
            payload["schema_ready"] = table_exists(get_db(), "approval_decisions")
        except Exception:  # noqa: BLE001
            app.logger.exception("health_db_check_failed")
            payload["status"] = "degraded"
            payload["schema_ready"] = False
        return payload, 200

    @app.route("/metrics")
    def metrics():
        return app.response_class(prometheus_metrics_text(), mimetype="text/plain; version=0.0.4")
