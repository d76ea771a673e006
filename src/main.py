import logging
import time

from flask import Flask, g, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from src.blueprints.cart import cart_bp
from src.config import Config
from src.database import Base, close_db, engine
from src.observability import configure_logging, get_metrics_snapshot, increment_counter, observe_latency
from src.observability.health import check_database_health
from src.observability.logging_config import ensure_request_id

logger = logging.getLogger(__name__)

app = Flask(__name__)
Config.configure_app(app)
configure_logging(app)
app.register_blueprint(cart_bp)
app.teardown_appcontext(close_db)


def init_database():
    """Create catalog, pricing matrix and order tables if they are missing."""
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables ready at %s", engine.url.render_as_string(hide_password=True))
    except SQLAlchemyError:
        # carts still price with the fallback formula while the database is down
        logger.exception("Could not create database tables")


init_database()


def _endpoint_label() -> str:
    return request.endpoint or request.path


@app.before_request
def start_request():
    g.request_started_at = time.perf_counter()
    ensure_request_id()
    increment_counter("http_requests_total", labels={"method": request.method, "endpoint": _endpoint_label()})


@app.after_request
def finish_request(response):
    started = g.get("request_started_at")
    if started is not None:
        observe_latency(
            "http_request_latency_ms",
            (time.perf_counter() - started) * 1000,
            labels={"endpoint": _endpoint_label(), "status": str(response.status_code)},
        )
    response.headers[Config.REQUEST_ID_HEADER] = g.get("request_id", "")
    return response


@app.route("/health", methods=["GET"])
def health():
    status = check_database_health()
    return jsonify(status), 200 if status["status"] == "UP" else 503


@app.route("/metrics", methods=["GET"])
def metrics():
    if not Config.OBSERVABILITY_ENABLED:
        return jsonify({"error": "Observability disabled"}), 404
    return jsonify(get_metrics_snapshot())
