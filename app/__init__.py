from flask import Flask

from app.api import api_bp
from app.cli import register_commands
from app.config import Config
from app.extensions import db, login_manager, migrate
from app.jobs.scheduler import start_scheduler


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)
    app.logger.setLevel(app.config["LOG_LEVEL"])

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    app.register_blueprint(api_bp)
    register_commands(app)

    with app.app_context():
        db.create_all()

    start_scheduler(app)
    return app
