# storefront/main.py
import logging
import time

from flask import Flask, request, session, jsonify, g, abort
from werkzeug.exceptions import HTTPException

from storefront.config import Config
from storefront.database import get_db, close_db, init_database
from storefront.models import User
from storefront.blueprints.admin import admin_bp
from storefront.blueprints.affiliate import affiliate_bp
from storefront.blueprints.checkout import checkout_bp
from storefront.blueprints.paypal import paypal_bp
from storefront.observability import (
    configure_logging,
    ensure_request_id,
    increment_counter,
    observe_latency,
    get_metrics_snapshot,
    check_database_health,
)

app = Flask(__name__)
Config.configure_app(app)
configure_logging(app)
app.register_blueprint(checkout_bp)
app.register_blueprint(admin_bp)
app.register_blueprint(affiliate_bp)
app.register_blueprint(paypal_bp)

logger = logging.getLogger(__name__)

try:
    init_database()
    logger.info("Database tables initialized successfully")
except Exception as e:
    logger.exception("Error initializing database: %s", e)


def is_admin_user() -> bool:
    user = getattr(g, "current_user", None)
    if user:
        return user.is_admin
    return False


@app.before_request
def before_request_logging():
    # Identity comes from the upstream auth provider as a session user id
    g.current_user = None
    if 'user_id' in session:
        db = get_db()
        g.current_user = db.query(User).filter_by(userID=session['user_id']).first()
    g.request_started_at = time.perf_counter()
    g.request_id = ensure_request_id()
    increment_counter(
        "http_requests_total",
        labels={
            "method": request.method,
            "endpoint": request.endpoint or request.path,
        },
    )


@app.after_request
def after_request_logging(response):
    started = getattr(g, 'request_started_at', None)
    if started is not None:
        duration_ms = (time.perf_counter() - started) * 1000
        observe_latency(
            "http_request_latency_ms",
            duration_ms,
            labels={
                "method": request.method,
                "endpoint": request.endpoint or request.path,
                "status": str(response.status_code),
            },
        )
    if response.status_code >= 500:
        increment_counter(
            "http_errors_total",
            labels={
                "method": request.method,
                "endpoint": request.endpoint or request.path,
                "status": str(response.status_code),
            },
        )
        logger.error("Request finished with error status %s", response.status_code)
    else:
        logger.info("Request finished", extra={"status_code": response.status_code})
    request_id = getattr(g, "request_id", None)
    if request_id:
        response.headers[Config.REQUEST_ID_HEADER] = request_id
    return response


@app.teardown_appcontext
def teardown_db(exception):
    close_db(exception)


@app.errorhandler(HTTPException)
def handle_http_error(exc):
    return jsonify({"error": exc.description or exc.name}), exc.code


@app.route('/health', methods=['GET'])
def health():
    db_status = check_database_health()
    overall = "UP" if db_status.get("status") == "UP" else "DEGRADED"
    status_code = 200 if overall == "UP" else 503
    return jsonify({
        "status": overall,
        "components": {
            "database": db_status
        }
    }), status_code


@app.route('/admin/metrics', methods=['GET'])
def admin_metrics():
    if not is_admin_user():
        abort(403)
    return jsonify(get_metrics_snapshot())
