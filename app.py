import os
import sys
import logging
import uuid
from flask import Flask, request, jsonify, g, Response
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.middleware.proxy_fix import ProxyFix
from dotenv import load_dotenv

load_dotenv()

from address_validation import SmartyClient  # noqa: E402
from batch import process_batch, read_addresses_csv, rows_to_csv  # noqa: E402
from eligibility_config import load_policy, load_service_config  # noqa: E402
from errors import (  # noqa: E402
    ClientInputError,
    EligibilityLookupError,
    NoMatchError,
    ReferenceDataLoadError,
    UpstreamTransportError,
)
from geo_overlay import GeoOverlayClient  # noqa: E402
from health_monitor import get_all_status  # noqa: E402
from lookup import evaluate_coordinates, lookup_address  # noqa: E402
from lookup_trace import LookupTrace, clear_trace, set_trace, timed_stage  # noqa: E402
from models import init_db, record_notification  # noqa: E402
from reference_data import load_reference_data  # noqa: E402

# ---------------------------------------------------------------------------
# Sentry error tracking: gated on SENTRY_DSN; silent when unset (local dev)
# ---------------------------------------------------------------------------
_sentry_dsn = os.environ.get("SENTRY_DSN")
if _sentry_dsn:
    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration

    def _sentry_before_send(event, hint):
        """Demote expected failures to breadcrumbs; only unexpected errors become Sentry events."""
        exc_info = hint.get("exc_info")
        if exc_info:
            exc_type, exc_value, _ = exc_info
            if exc_type is not None and issubclass(
                exc_type, (ClientInputError, NoMatchError, UpstreamTransportError)
            ):
                sentry_sdk.add_breadcrumb(
                    category=getattr(exc_type, "error_type", "lookup"),
                    message=str(exc_value) if exc_value else "",
                    level="warning",
                )
                return None
        return event

    sentry_sdk.init(
        dsn=_sentry_dsn,
        integrations=[FlaskIntegration()],
        traces_sample_rate=0.0,
        environment=os.environ.get("APP_ENVIRONMENT", "production"),
        before_send=_sentry_before_send,
    )

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SERVICE_CONFIG = load_service_config()
POLICY = load_policy()

# ---------------------------------------------------------------------------
# Reference data: loaded once, shared read-only by every request.
# The service never answers with partial tables.
# ---------------------------------------------------------------------------
try:
    REFERENCE_DATA = load_reference_data(
        SERVICE_CONFIG.tracts_path,
        SERVICE_CONFIG.income_limits_path,
        SERVICE_CONFIG.climate_zones_path,
    )
except ReferenceDataLoadError as e:
    logger.critical("FATAL: %s", e)
    print(f"FATAL: could not load reference data: {e}", file=sys.stderr)
    sys.exit(1)

smarty_client = SmartyClient(
    SERVICE_CONFIG.smarty_auth_id,
    SERVICE_CONFIG.smarty_auth_token,
    base_url=SERVICE_CONFIG.smarty_base_url,
    timeout=SERVICE_CONFIG.upstream_timeout,
)
overlay_client = GeoOverlayClient(
    SERVICE_CONFIG.overlay_url,
    timeout=SERVICE_CONFIG.upstream_timeout,
)

app = Flask(__name__)

# Proxy fix: the service runs behind a reverse proxy that sets
# X-Forwarded-For; rate limiting needs the real client IP.
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1)

# The lookup widget is embedded on partner sites, so the API is cross-origin.
CORS(app, resources={r"/api/*": {"origins": "*"}})

# ---------------------------------------------------------------------------
# Rate limiting: per-process in-memory storage.
# ---------------------------------------------------------------------------
app.config["RATELIMIT_ENABLED"] = os.environ.get("RATELIMIT_ENABLED", "true").lower() == "true"
limiter = Limiter(
    get_remote_address,
    app=app,
    default_limits=[SERVICE_CONFIG.rate_limit_default],
    storage_uri="memory://",
)
logging.getLogger("flask-limiter").setLevel(logging.WARNING)

if SERVICE_CONFIG.missing_keys():
    logger.warning(
        "%s not set. Address validation will fail until it is configured. "
        "For local development, copy .env.example to .env and add your keys.",
        " and ".join(SERVICE_CONFIG.missing_keys()),
    )


# ---------------------------------------------------------------------------
# Request ID middleware: every request gets a unique ID for tracing
# ---------------------------------------------------------------------------
@app.before_request
def _set_request_context():
    g.request_id = uuid.uuid4().hex[:10]


def _error_payload(message, error_type, **extra):
    payload = {
        "error": message,
        "error_type": error_type,
        "request_id": getattr(g, "request_id", "unknown"),
    }
    payload.update(extra)
    return payload


def _json_body():
    """Request JSON object, or {} for a missing, unparsable or non-object body."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _require_address(address):
    if address is not None and not isinstance(address, str):
        raise ClientInputError("Address must be a string")
    if not (address or "").strip():
        raise ClientInputError("Missing address input")


def _config_unavailable():
    """503 response when upstream credentials are missing, else None."""
    missing = SERVICE_CONFIG.missing_keys()
    if not missing:
        return None
    logger.error("[%s] Missing required env vars: %s", g.request_id, missing)
    return jsonify(_error_payload(
        "Address validation is not configured.",
        "missing_config",
        missing_keys=list(missing),
    )), 503


def _traced(fn, *args, **kwargs):
    """Run a request handler body inside a LookupTrace."""
    trace = LookupTrace(trace_id=g.request_id)
    set_trace(trace)
    try:
        return fn(*args, **kwargs)
    finally:
        trace.log_summary()
        clear_trace()


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@app.route("/")
@limiter.exempt
def index():
    return Response("Eligibility lookup service is running\n", mimetype="text/plain")


@app.route("/healthz")
@app.route("/api/health")
@limiter.exempt
def healthz():
    """Health check: config, reference table sizes, upstream status."""
    missing = SERVICE_CONFIG.missing_keys()
    config_ok = not missing
    return jsonify({
        "status": "ok" if config_ok else "degraded",
        "missing_keys": list(missing),
        "reference_data": REFERENCE_DATA.sizes(),
        "services": get_all_status(),
    }), 200 if config_ok else 503


@app.route("/api/validate", methods=["POST"])
@limiter.limit(lambda: SERVICE_CONFIG.rate_limit_validate)
def validate():
    """Standardize and geocode one address."""
    address = _json_body().get("address")
    logger.info("[%s] POST /api/validate address=%r", g.request_id, address)
    _require_address(address)
    unavailable = _config_unavailable()
    if unavailable:
        return unavailable

    candidate = _traced(timed_stage, "validate", smarty_client.validate, address)
    return jsonify(candidate.to_dict())


@app.route("/api/overlay", methods=["POST"])
def overlay():
    """Overlay coordinates and return the eligibility outcome."""
    data = _json_body()
    lat, lon = data.get("lat"), data.get("lon")
    zipcode = data.get("zipcode")
    logger.info("[%s] POST /api/overlay lat=%r lon=%r zip=%r", g.request_id, lat, lon, zipcode)

    _, outcome = _traced(
        evaluate_coordinates, lat, lon, zipcode,
        reference=REFERENCE_DATA,
        overlay_client=overlay_client,
        policy=POLICY,
    )
    return jsonify(outcome.to_dict())


@app.route("/api/lookup", methods=["POST"])
@limiter.limit(lambda: SERVICE_CONFIG.rate_limit_validate)
def lookup():
    """Validate + overlay + decide in one call."""
    address = _json_body().get("address")
    logger.info("[%s] POST /api/lookup address=%r", g.request_id, address)
    _require_address(address)
    unavailable = _config_unavailable()
    if unavailable:
        return unavailable

    result = _traced(
        lookup_address, address,
        reference=REFERENCE_DATA,
        smarty_client=smarty_client,
        overlay_client=overlay_client,
        policy=POLICY,
    )
    return jsonify(result.to_dict())


@app.route("/api/notify", methods=["POST"])
def notify():
    """Save an email to be notified when eligibility expands."""
    data = _json_body()
    record_notification(data.get("email"), data.get("tract"))
    return jsonify({"success": True, "message": "Email saved for notifications."})


@app.route("/api/upload-csv", methods=["POST"])
def upload_csv():
    """Batch lookup over an uploaded CSV; responds with a results CSV."""
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        raise ClientInputError("No CSV file uploaded")
    try:
        text = upload.read().decode("utf-8-sig")
    except UnicodeDecodeError:
        raise ClientInputError("CSV is empty or invalid format")
    addresses = read_addresses_csv(text)

    unavailable = _config_unavailable()
    if unavailable:
        return unavailable

    def _lookup_one(address):
        return lookup_address(
            address,
            reference=REFERENCE_DATA,
            smarty_client=smarty_client,
            overlay_client=overlay_client,
            policy=POLICY,
        )

    rows = process_batch(
        addresses, _lookup_one, REFERENCE_DATA,
        max_workers=SERVICE_CONFIG.batch_max_workers,
        batch_id=g.request_id,
    )
    return Response(
        rows_to_csv(rows),
        mimetype="text/csv",
        headers={"Content-Disposition": 'attachment; filename="batch_results.csv"'},
    )


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------

@app.errorhandler(EligibilityLookupError)
def lookup_error(e):
    if e.status_code >= 500 or isinstance(e, NoMatchError):
        logger.warning("[%s] %s: %s", getattr(g, "request_id", "-"), type(e).__name__, e)
    return jsonify(_error_payload(str(e), e.error_type)), e.status_code


@app.errorhandler(429)
def rate_limit_exceeded(e):
    return jsonify(_error_payload(
        "Too many requests. Please wait and try again.", "rate_limited",
    )), 429


@app.errorhandler(404)
def not_found(e):
    return jsonify(_error_payload("Not found", "not_found")), 404


@app.errorhandler(500)
def internal_error(e):
    return jsonify(_error_payload("Internal server error", "internal")), 500


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------

# Initialize database on import (safe to call repeatedly)
init_db()

if __name__ == "__main__":
    from health_monitor import start_monitor
    start_monitor(SERVICE_CONFIG.overlay_url)
    port = int(os.environ.get("PORT", 5001))
    debug = os.environ.get("FLASK_DEBUG", "0") == "1"
    app.run(host="0.0.0.0", port=port, debug=debug)
