import atexit

import click
from celery import Celery, Task
from flask import Flask
from werkzeug.debug import DebuggedApplication
from werkzeug.middleware.proxy_fix import ProxyFix

from deploywatch.extensions import db
from deploywatch.incident.services import build_services
from deploywatch.incident.views import api, incident_bp
from deploywatch.observability import ObservabilityMiddleware, setup_logging
from deploywatch.up.views import up


def create_celery_app(app=None):
    """
    Create a new Celery app and tie together the Celery config to the app's
    config. Wrap all tasks in the context of the application.

    :param app: Flask app
    :return: Celery app
    """
    app = app or create_app()

    class FlaskTask(Task):
        def __call__(self, *args, **kwargs):
            with app.app_context():
                return self.run(*args, **kwargs)

    celery = Celery(app.import_name, task_cls=FlaskTask)
    celery.conf.update(app.config.get("CELERY_CONFIG", {}))
    celery.set_default()
    app.extensions["celery"] = celery

    return celery


def create_app(settings_override=None):
    """
    Create a Flask application using the app factory pattern.

    :param settings_override: Override settings
    :return: Flask app
    """
    app = Flask(__name__)

    app.config.from_object("config.settings")

    if settings_override:
        app.config.update(settings_override)

    setup_logging(app)
    middleware(app)

    app.register_blueprint(up)
    app.register_blueprint(api)
    app.register_blueprint(incident_bp)

    extensions(app)
    services(app)
    register_cli(app)

    return app


def extensions(app):
    """
    Register 0 or more extensions (mutates the app passed in).

    :param app: Flask application instance
    :return: None
    """
    db.init_app(app)

    return None


def services(app):
    """
    Build the incident engine once per process and expose it on the app.

    :param app: Flask application instance
    :return: None
    """
    incident_services = build_services(app.config, db.session)
    app.extensions["incident"] = incident_services
    atexit.register(incident_services.close)

    return None


def register_cli(app):
    """Register custom Flask CLI commands."""

    @app.cli.command("poll")
    def poll_command():
        """Run one polling cycle against the latest deployment."""
        from deploywatch.incident.agent import run_agent

        result = run_agent(app.extensions["incident"], db.session)
        click.echo(f"Agent run: {result}")

    @app.cli.command("seed-incident")
    def seed_incident_command():
        """Replace incident data with one demo timeout incident."""
        from deploywatch.incident.seed import seed_demo_incident

        incident = seed_demo_incident(db.session)
        click.echo(f"Seeded incident {incident.id} ({incident.title})")

    @app.cli.command("setup-assistant")
    def setup_assistant_command():
        """Create the Backboard diagnosis assistant and thread."""
        from deploywatch.incident.diagnosis import setup_assistant

        api_key = app.config.get("BACKBOARD_API_KEY")
        if not api_key:
            raise click.ClickException("BACKBOARD_API_KEY is not configured.")

        result = setup_assistant(api_key, app.config["BACKBOARD_BASE_URL"])
        click.echo(f"BACKBOARD_ASSISTANT_ID={result['assistant_id']}")
        click.echo(f"BACKBOARD_THREAD_ID={result['thread_id']}")


def middleware(app):
    """
    Register 0 or more middleware (mutates the app passed in).

    :param app: Flask application instance
    :return: None
    """
    # Enable the Flask interactive debugger in the browser for development.
    if app.debug:
        app.wsgi_app = DebuggedApplication(app.wsgi_app, evalex=True)

    # Set the real IP address into request.remote_addr when behind a proxy.
    app.wsgi_app = ProxyFix(app.wsgi_app)

    ObservabilityMiddleware(app)

    return None


celery_app = create_celery_app()
