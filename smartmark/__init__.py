import click
from flask import Flask

from smartmark.api import api_bp
from smartmark.config import Config
from smartmark.extensions import db, login_manager, migrate
from smartmark.jobs.scheduler import start_scheduler
from smartmark.models import ApiToken, User
from smartmark.services import security  # noqa: F401
from smartmark.services.feed import init_feed


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    init_feed(app)

    app.register_blueprint(api_bp)

    @app.cli.command("init-db")
    def init_db_command():
        db.create_all()
        print("Initialized SmartMark database.")

    @app.cli.command("create-user")
    @click.argument("username")
    @click.password_option()
    def create_user_command(username, password):
        if User.query.filter_by(username=username).first():
            raise click.ClickException(f"user {username!r} already exists")
        user = User(username=username, is_active=True)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        print(f"Created user {username} (id {user.id}).")

    @app.cli.command("issue-token")
    @click.argument("username")
    @click.option("--name", default="SmartMark CLI Token")
    def issue_token_command(username, name):
        user = User.query.filter_by(username=username).first()
        if not user:
            raise click.ClickException(f"unknown user {username!r}")
        token, token_hash = ApiToken.issue_token()
        db.session.add(ApiToken(user_id=user.id, name=name, token_hash=token_hash))
        db.session.commit()
        print(token)

    with app.app_context():
        db.create_all()

    start_scheduler(app)
    return app
