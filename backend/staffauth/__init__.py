from flask import Flask
from werkzeug.exceptions import HTTPException
from flask_jwt_extended import JWTManager
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker, scoped_session
from dotenv import load_dotenv
from typing import Optional, Dict, Any
import logging
import os

load_dotenv()

db_engine = None
SessionLocal = None
jwt = JWTManager()


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


def error_payload(e: HTTPException):
    payload = {
        'error': {
            'status': e.code,
            'title': e.name,
            'detail': e.description,
        }
    }
    code = getattr(e, 'error_code', None)
    if code:
        payload['error']['code'] = code
    return payload


def _unauthenticated_response(detail: str):
    from .errors import Unauthenticated
    err = Unauthenticated(description=detail)
    return error_payload(err), err.code, {'WWW-Authenticate': 'Bearer'}


def create_app(config: Optional[Dict[str, Any]] = None):
    global db_engine, SessionLocal
    app = Flask(__name__)

    app.config['JWT_SECRET_KEY'] = os.getenv('JWT_SECRET_KEY', 'dev-secret')
    app.config['DATABASE_URL'] = os.getenv('DATABASE_URL', 'sqlite:///dev.db')
    app.config['SESSION_TTL_SECONDS'] = int(os.getenv('SESSION_TTL_SECONDS', '28800'))
    app.config['RESTORE_TOKEN_TTL_SECONDS'] = int(os.getenv('RESTORE_TOKEN_TTL_SECONDS', '900'))
    app.config['PERMISSION_CACHE_TTL_SECONDS'] = float(os.getenv('PERMISSION_CACHE_TTL_SECONDS', '30'))
    app.config['AUDIT_FAIL_CLOSED'] = _env_bool('AUDIT_FAIL_CLOSED')
    app.config['LOG_LEVEL'] = os.getenv('LOG_LEVEL', 'INFO')

    if config:
        # allow tests or callers to override default config values
        app.config.update(config)

    level = str(app.config['LOG_LEVEL']).upper()
    app.logger.setLevel(level)
    logging.getLogger('staffauth').setLevel(level)

    # Database
    db_url = app.config['DATABASE_URL']
    if db_url.endswith(':memory:'):
        # Ensure a single shared in-memory SQLite database across all sessions
        db_engine = create_engine(
            db_url,
            echo=False,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        db_engine = create_engine(db_url, echo=False, future=True)
    SessionLocal = scoped_session(sessionmaker(bind=db_engine, expire_on_commit=False, autoflush=False))

    from .services.permissions import permission_cache
    permission_cache.ttl_seconds = float(app.config['PERMISSION_CACHE_TTL_SECONDS'])
    permission_cache.clear()

    jwt.init_app(app)

    @jwt.unauthorized_loader
    def missing_token(reason):
        return _unauthenticated_response(reason)

    @jwt.invalid_token_loader
    def invalid_token(reason):
        return _unauthenticated_response(reason)

    @jwt.expired_token_loader
    def expired_token(jwt_header, jwt_payload):
        return _unauthenticated_response('Session expired')

    from .routes.auth import auth_bp
    from .routes.iam import iam_bp
    from .routes.api import api_bp
    app.register_blueprint(auth_bp)
    app.register_blueprint(iam_bp, url_prefix='/iam')
    app.register_blueprint(api_bp, url_prefix='/api')

    @app.route('/healthz')
    def health():
        return {'status': 'ok'}

    # Unified error handler producing standardized JSON shape
    @app.errorhandler(Exception)
    def handle_errors(e):  # type: ignore
        # rejected operations leave no partial writes behind
        SessionLocal.rollback()
        if isinstance(e, HTTPException):
            headers = {k: v for k, v in e.get_headers() if k == 'WWW-Authenticate'}
            return error_payload(e), e.code, headers
        # Unhandled exception
        app.logger.exception('Unhandled exception')
        return {
            'error': {
                'status': 500,
                'title': 'Internal Server Error',
                'detail': 'Unexpected error'
            }
        }, 500

    from .openapi import build_openapi_spec

    @app.route('/openapi.json')
    def openapi_spec():
        return build_openapi_spec()

    @app.route('/docs')
    def docs_index():
        # Lightweight HTML referencing Redoc CDN (no local install) for quick browsing
        return (
            "<!DOCTYPE html><html><head><title>API Docs</title>"
            "<link rel=\"stylesheet\" href=\"https://cdn.jsdelivr.net/npm/redoc@next/bundles/redoc.standalone.css\" />"
            "</head><body><redoc spec-url='/openapi.json'></redoc>"
            "<script src='https://cdn.jsdelivr.net/npm/redoc@next/bundles/redoc.standalone.js'></script>"
            "</body></html>"
        )

    return app


def get_db():
    return SessionLocal()
