import click
from datetime import date
from flask import Flask
from flask.cli import with_appcontext
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

from .config import Config, _normalise_prefix


db = SQLAlchemy()
migrate = Migrate()


def create_app(config_class: type[Config] = Config) -> Flask:
    app = Flask(__name__, static_folder=None)
    app.config.from_object(config_class)

    url_prefix = _normalise_prefix(app.config.get("URL_PREFIX", ""))
    app.config["URL_PREFIX"] = url_prefix

    db.init_app(app)
    migrate.init_app(app, db)

    from . import models  # noqa: F401  # Ensure models registered for migrations

    with app.app_context():
        db.create_all()

    from .routes import bp as main_bp

    app.register_blueprint(main_bp, url_prefix=url_prefix or None)

    @app.cli.command("seed")
    @with_appcontext
    def seed() -> None:
        """Seed initial data for development."""
        from .seed import seed_data

        seed_data()
        click.echo("Database seeded with sample data.")

    @app.cli.command("generate-sessions")
    @click.argument("class_id", type=int)
    @click.option(
        "--policy",
        type=click.Choice(["strict", "best-effort"]),
        default="best-effort",
        show_default=True,
    )
    @click.option("--start", "start_date", type=click.DateTime(formats=["%Y-%m-%d"]))
    @click.option("--end", "end_date", type=click.DateTime(formats=["%Y-%m-%d"]))
    @click.option("--include-past", is_flag=True, help="Keep candidates already in the past.")
    @with_appcontext
    def generate_sessions(class_id, policy, start_date, end_date, include_past) -> None:
        """Expand a class's weekly pattern into sessions."""
        from .errors import SchedulingError
        from .scheduler import SchedulingService

        service = SchedulingService.from_config(app.config)
        try:
            result = service.generate_sessions(
                class_id,
                start_date=_as_date(start_date),
                end_date=_as_date(end_date),
                policy=policy,
                include_past=include_past,
            )
        except (SchedulingError, ValueError) as exc:
            raise click.ClickException(str(exc)) from exc
        click.echo(f"{len(result.created)} session(s) created, {len(result.skipped)} skipped.")
        for entry in result.skipped:
            reasons = "; ".join(conflict.reason for conflict in entry.conflicts)
            click.echo(f"  skipped {entry.candidate}: {reasons}")

    return app


def _as_date(value) -> date | None:
    if value is None:
        return None
    return value.date()
