from flask import Flask
from flasgger import Swagger
from prometheus_flask_exporter import PrometheusMetrics
from flask_cors import CORS

from .logging_setup import setup_logging
from .errors import register_error_handlers
from .routes import health, escrow_routes, ai_routes, user_routes, analytics_routes, blockchain_routes
from .config import DevelopmentConfig, ProductionConfig, TestingConfig

API_VERSION = "1.0.0"

CORS_HEADERS = ["Content-Type", "Authorization", "X-Requested-With", "X-Request-ID", "Accept", "Origin"]

SWAGGER_TAGS = [
    {"name": "Escrow", "description": "Create, deliver, release and re-term escrows"},
    {"name": "AI", "description": "Term-change suggestions and their approval"},
    {"name": "Users", "description": "Profiles, directory and delivery stats"},
    {"name": "Analytics", "description": "Platform and per-user reporting"},
    {"name": "Blockchain", "description": "Simulated Soroban contract jobs"},
    {"name": "Health", "description": "Liveness"},
]


def _init_cors(app):
    """CORS_ORIGINS: unset or '*' allows any origin, else a comma-separated allow-list."""
    raw = (app.config.get("CORS_ORIGINS") or "*").strip()
    origins = "*" if raw == "*" else [o.strip() for o in raw.split(",") if o.strip()]
    CORS(
        app,
        resources={r"/api/*": {"origins": origins}},
        supports_credentials=False,
        methods=["GET", "POST", "PUT", "OPTIONS"],
        allow_headers=CORS_HEADERS,
    )


def _init_swagger(app):
    template = {
        "swagger": "2.0",
        "info": {
            "title": "Adaptive Escrow Pro API",
            "description": "Escrow lifecycle, AI-assisted term suggestions, users, analytics and a simulated Soroban bridge.",
            "version": API_VERSION,
        },
        "basePath": "/",
        "tags": SWAGGER_TAGS,
    }
    config = {
        "headers": [],
        "specs": [{
            "endpoint": "apispec_1",
            "route": "/apispec_1.json",
            "rule_filter": lambda rule: rule.rule.startswith(("/api/", "/healthz")),
            "model_filter": lambda tag: True,
        }],
        "static_url_path": "/flasgger_static",
        "swagger_ui": True,
        "specs_route": "/apidocs/",
    }
    Swagger(app, template=template, config=config)


def create_app(config_name: str = "development"):
    app = Flask(__name__)

    config_map = {
        "development": DevelopmentConfig,
        "production": ProductionConfig,
        "testing": TestingConfig,
    }
    app.config.from_object(config_map.get(config_name.lower(), DevelopmentConfig))

    setup_logging(app)
    _init_cors(app)

    from .models import init_app as init_models
    init_models(app)

    register_error_handlers(app)

    # Suggestion engine with its reasoning provider injected from config
    from .services.ai_service import provider_from_config
    from .services.suggestion_service import SuggestionEngine
    app.extensions["suggestion_engine"] = SuggestionEngine(
        provider_from_config(app.config),
        ttl_hours=app.config["SUGGESTION_TTL_HOURS"],
    )

    _init_swagger(app)

    app.register_blueprint(health.bp)
    app.register_blueprint(escrow_routes.bp, url_prefix="/api/escrow")
    app.register_blueprint(ai_routes.bp)
    app.register_blueprint(user_routes.bp, url_prefix="/api/users")
    app.register_blueprint(analytics_routes.bp, url_prefix="/api/analytics")
    app.register_blueprint(blockchain_routes.bp, url_prefix="/api/blockchain")

    from .seed import register_cli
    register_cli(app)

    metrics = PrometheusMetrics(app, path="/metrics")
    metrics.info("app_info", "Adaptive Escrow Pro service", version=API_VERSION)

    return app
