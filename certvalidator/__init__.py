import json

import click
from flask import Flask, Response

from certvalidator import settings
from certvalidator.config import configure_logging

def create_app(test_config=None):
    app = Flask(__name__, instance_relative_config=True)

    if test_config:
        app.config.update(test_config)
    else:
        app.config['SECRET_KEY'] = settings.FLASK_SECRET_KEY # pragma: no cover

    configure_logging()

    @app.route("/healthcheck")
    def healthcheck():
        return Response("<p>Hello World</p>"), 200

    from certvalidator import orchestrator
    app.register_blueprint(orchestrator.bp)

    @app.cli.command("handle-event")
    @click.argument("event_file", type=click.File("r"))
    def handle_event_command(event_file) -> None:
        """Replay a saved lifecycle event through the dispatcher."""
        result = orchestrator.dispatcher.handle(json.load(event_file))
        click.echo(f"{result.status} {result.physical_resource_id} {result.reason or ''}".rstrip())

    return app
