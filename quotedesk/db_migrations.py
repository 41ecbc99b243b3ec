"""`flask db ...` commands for the quote schema, backed by Alembic."""

from __future__ import annotations

from pathlib import Path

import click
from alembic import command
from alembic.config import Config as AlembicConfig
from flask import Flask


_PROJECT_ROOT = Path(__file__).resolve().parents[1]
_SERVER_URL_PREFIXES = ("postgresql://", "postgresql+", "sqlite://", "sqlite+pysqlite://")


def to_sqlalchemy_url(db_location: str) -> str:
    """Turn the app's DB_PATH (a file path or a server URL) into a SQLAlchemy URL."""
    location = (db_location or "").strip()
    if not location:
        raise RuntimeError("DB_PATH is not set; cannot run migrations.")
    if location.startswith("postgres://"):
        # Heroku-style scheme, rejected by SQLAlchemy 1.4+.
        location = "postgresql://" + location[len("postgres://") :]
    if location.startswith(_SERVER_URL_PREFIXES):
        return location
    return f"sqlite:///{Path(location).expanduser().resolve().as_posix()}"


def build_alembic_config(app: Flask) -> AlembicConfig:
    ini_path = _PROJECT_ROOT / "alembic.ini"
    if not ini_path.exists():
        raise RuntimeError(f"alembic.ini not found in {_PROJECT_ROOT}.")

    alembic_cfg = AlembicConfig(str(ini_path))
    alembic_cfg.set_main_option("script_location", (_PROJECT_ROOT / "migrations").as_posix())
    alembic_cfg.set_main_option("sqlalchemy.url", to_sqlalchemy_url(app.config["DB_PATH"]))
    alembic_cfg.attributes["configured_by_app"] = True
    return alembic_cfg


def register_db_cli(app: Flask) -> None:
    @app.cli.group("db")
    def db_group() -> None:
        """Quote schema migrations."""

    @db_group.command("upgrade")
    @click.argument("revision", required=False, default="head")
    def db_upgrade(revision: str) -> None:
        command.upgrade(build_alembic_config(app), revision)
        click.echo(f"Quote schema upgraded to {revision}.")

    @db_group.command("downgrade")
    @click.argument("revision", required=False, default="-1")
    def db_downgrade(revision: str) -> None:
        command.downgrade(build_alembic_config(app), revision)
        click.echo(f"Quote schema downgraded to {revision}.")

    @db_group.command("stamp")
    @click.argument("revision", required=False, default="head")
    def db_stamp(revision: str) -> None:
        """Mark a database created by DB_AUTO_INIT as being at REVISION."""
        command.stamp(build_alembic_config(app), revision)
        click.echo(f"Quote schema stamped at {revision}.")

    @db_group.command("current")
    def db_current() -> None:
        command.current(build_alembic_config(app), verbose=True)

    @db_group.command("history")
    def db_history() -> None:
        command.history(build_alembic_config(app))
