import logging
import time
from typing import Optional

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from quart import Quart, jsonify, request

from .common.config import settings
from .common.database import build_engine, build_sessionmaker, init_db
from .common.errors import register_error_handlers
from .common.kafka_client import close_producer
from .common.redis_client import close_redis
from .inventory.controller import bp as inventory_bp
from .orders.controller import bp as orders_bp
from .realtime.controller import bp as realtime_bp
from .seed import seed_products

log = logging.getLogger(__name__)

# Basic metrics with proper buckets for latency
REQUEST_COUNT = Counter("http_requests_total", "Total HTTP requests", ["method", "endpoint", "status"])
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["endpoint"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.075, 0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0, float("inf"))
)


def normalize_endpoint(path: str) -> str:
    """Collapse ids out of the path so metric labels stay bounded."""
    parts = ["<id>" if p.isdigit() else p for p in path.split("/")]
    return "/".join(parts)


def create_app(db_url: Optional[str] = None) -> Quart:
    app = Quart(__name__)

    engine = build_engine(db_url)
    app.db_engine = engine
    app.db_sessions = build_sessionmaker(engine)

    # Blueprints
    app.register_blueprint(inventory_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(realtime_bp)
    register_error_handlers(app)

    @app.before_request
    async def before_request():
        request._start_time = time.time()
        log.debug("[Instance %s] %s %s", settings.INSTANCE_ID, request.method, request.path)

    @app.after_request
    async def after_request(response):
        start = getattr(request, "_start_time", None)
        if start is None:
            return response
        try:
            endpoint = normalize_endpoint(request.path)
            REQUEST_LATENCY.labels(endpoint=endpoint).observe(time.time() - start)
            REQUEST_COUNT.labels(
                method=request.method,
                endpoint=endpoint,
                status=str(response.status_code)
            ).inc()
            response.headers["X-Instance-ID"] = settings.INSTANCE_ID
        except Exception as e:
            log.error("Error recording metrics: %s", e)
        return response

    @app.get("/metrics")
    async def metrics():
        data = generate_latest()
        return app.response_class(data, mimetype=CONTENT_TYPE_LATEST)

    @app.get("/health")
    async def health():
        return jsonify({"status": "ok"})

    @app.before_serving
    async def startup():
        logging.basicConfig(level=settings.LOG_LEVEL)
        log.info("Initializing database...")
        await init_db(engine)
        if settings.SEED_ON_STARTUP:
            added = await seed_products(app.db_sessions)
            log.info("Seeded %s products.", added)
        log.info("Database ready.")

    @app.after_serving
    async def shutdown():
        await close_producer()
        await close_redis()
        await engine.dispose()
        log.info("Shutdown complete.")

    return app
