import logging

from dotenv import load_dotenv
from flask import Flask, jsonify
from sqlalchemy import text

# Carrega variaveis de ambiente de .env (desenvolvimento local)
load_dotenv()

from config import Config
from models.extensions import db, init_db
from routes.checkout_routes import checkout_bp
from routes.webhook_routes import webhooks_bp
from services.cielo import CieloClient
from services.jobs import register_cli
from services.notification_service import NotificationService
from services.rate_limiter import SlidingWindowRateLimiter
from services.webhook_security import warn_if_insecure_config


def _configure_logging(app: Flask) -> None:
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )
    root.setLevel(level)


def create_app(config_object=Config, overrides: dict | None = None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(config_object)
    if overrides:
        app.config.update(overrides)

    _configure_logging(app)

    # DB
    init_db(app)

    # Integracoes externas (uma instancia por app)
    app.extensions["cielo"] = CieloClient.from_config(app.config)
    app.extensions["notifications"] = NotificationService.from_config(app.config)
    app.extensions["webhook_rate_limiter"] = SlidingWindowRateLimiter()

    warn_if_insecure_config(app.config)
    if not app.extensions["cielo"].configured:
        logging.getLogger(__name__).warning("Credenciais da Cielo nao configuradas.")

    app.register_blueprint(checkout_bp)
    app.register_blueprint(webhooks_bp)
    register_cli(app)

    @app.get("/healthz")
    def healthz():
        try:
            db.session.execute(text("SELECT 1"))
        except Exception:
            logging.getLogger(__name__).warning("Healthcheck: banco indisponivel", exc_info=True)
            return jsonify({"ok": False, "db": "down"}), 503
        return jsonify({"ok": True, "env": app.config.get("APP_ENV")}), 200

    return app


if __name__ == "__main__":
    create_app().run(debug=Config.DEBUG)
