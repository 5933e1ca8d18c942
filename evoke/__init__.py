import logging

from flask import Flask
from werkzeug.middleware.proxy_fix import ProxyFix
from .config import Config
from .models import db


def create_app(test_config=None):
    app = Flask(__name__)
    app.config.from_object(Config())
    if test_config:
        app.config.update(test_config)
    app.logger.setLevel(getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO))
    db.init_app(app)
    # Trust reverse proxy headers (Render/Heroku)
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    from .services import redeem
    with app.app_context():
        db.create_all()
        redeem.init_app(app)

    from .routes_api import bp as api_bp
    from .routes_admin import bp as admin_bp
    app.register_blueprint(api_bp, url_prefix='/api')
    app.register_blueprint(admin_bp, url_prefix='/admin')

    @app.get('/health')
    def health():
        return {'ok': True}

    return app
