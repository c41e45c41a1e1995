import os
import logging
from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_wtf.csrf import CSRFProtect
from flask_cors import CORS
from flask_login import LoginManager
from sqlalchemy.orm import DeclarativeBase
from werkzeug.middleware.proxy_fix import ProxyFix

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass

db = SQLAlchemy(model_class=Base)
login_manager = LoginManager()
csrf = CSRFProtect()


def create_app():
    from utils.logging_config import setup_logging, log_request_start, log_request_end
    from utils.config_validator import get_config_status

    app = Flask(__name__)
    # Enforce SESSION_SECRET requirement
    app.secret_key = os.environ.get("SESSION_SECRET")
    if not app.secret_key:
        raise RuntimeError("SESSION_SECRET environment variable is required but not set")

    setup_logging(app)

    # x_for/x_proto/x_host: trust one proxy hop
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)

    production_origins = os.environ.get('ALLOWED_ORIGINS', '').split(',')
    allowed_origins = [origin.strip() for origin in production_origins if origin.strip()]
    if not allowed_origins:
        allowed_origins = ["http://localhost:3000", "http://127.0.0.1:3000"]

    CORS(app, origins=allowed_origins,
         supports_credentials=True,
         allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
         methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"])

    # PostgreSQL in production, SQLite for development and tests
    database_url = os.environ.get("DATABASE_URL") or "sqlite:///tripsheet_billing.db"

    if database_url.startswith(("postgresql://", "postgres://")):
        if database_url.startswith("postgres://"):
            database_url = database_url.replace("postgres://", "postgresql://", 1)
        database_url = database_url.replace("postgresql://", "postgresql+psycopg2://", 1)

        from urllib.parse import urlparse
        parsed = urlparse(database_url)
        logger.info(f"Connecting to PostgreSQL: host={parsed.hostname}, db={parsed.path[1:]}, user={parsed.username}")

        app.config["SQLALCHEMY_DATABASE_URI"] = database_url
        app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {
            "pool_size": 10,
            "pool_recycle": 280,
            "pool_pre_ping": True,
            "max_overflow": 15,
            "pool_timeout": 20,
            "connect_args": {
                "connect_timeout": 10,
                "application_name": "tripsheet_billing",
            }
        }
    else:
        app.config["SQLALCHEMY_DATABASE_URI"] = database_url
        app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {
            "pool_pre_ping": True,
        }

    app.config['TESTING'] = os.environ.get('TESTING', 'false').lower() == 'true'

    db.init_app(app)
    login_manager.init_app(app)
    csrf.init_app(app)

    @login_manager.user_loader
    def load_user(user_id):
        from models import User
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({
            'success': False,
            'error': 'UNAUTHORIZED',
            'message': 'Authentication required'
        }), 401

    app.before_request(log_request_start)
    app.after_request(log_request_end)

    from auth import auth_bp
    from admin_routes import admin_bp
    from driver_routes import driver_bp

    # JSON APIs authenticate via session cookie and are exempt from form CSRF tokens
    csrf.exempt(auth_bp)
    csrf.exempt(admin_bp)
    csrf.exempt(driver_bp)

    app.register_blueprint(auth_bp, url_prefix='/api/auth')
    app.register_blueprint(admin_bp, url_prefix='/api/admin')
    app.register_blueprint(driver_bp, url_prefix='/api/driver')

    @app.route('/health')
    def health():
        return jsonify({'status': 'ok'})

    app.logger.info(f"Configuration: {get_config_status()}")

    with app.app_context():
        import models  # noqa: F401
        db.create_all()

    return app
