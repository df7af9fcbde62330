#!/usr/bin/env python3
"""
Schema migrations for the back office database.

    python migrate.py upgrade                 # apply every pending revision
    python migrate.py downgrade --steps 2     # step back two revisions
    python migrate.py revision -m "add tabs"  # autogenerate from the models
    python migrate.py check                   # fail when models and revisions drift
    python migrate.py stamp head              # adopt a database built by create_all

The database URL always comes from the application settings, so the
migrator and the API cannot point at different databases.
"""
import argparse
import logging
import sys
from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.util.exc import CommandError

from backoffice.core.config import settings

logger = logging.getLogger("migrate")

PROJECT_ROOT = Path(__file__).resolve().parent


def alembic_config(database_url: str = None) -> Config:
    """alembic.ini with paths anchored at the project root, whatever the working directory."""
    config = Config(str(PROJECT_ROOT / "alembic.ini"))
    config.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    config.set_main_option("sqlalchemy.url", database_url or settings.database_url)
    return config


def _upgrade(config, args):
    command.upgrade(config, args.revision, sql=args.sql)
    logger.info(f"Database upgraded to {args.revision}")


def _downgrade(config, args):
    target = args.revision or f"-{args.steps}"
    command.downgrade(config, target, sql=args.sql)
    logger.info(f"Database downgraded to {target}")


def _revision(config, args):
    command.revision(config, message=args.message, autogenerate=not args.empty)
    logger.info(f"Revision created: {args.message}")


def _check(config, args):
    # Raises CommandError when autogenerate would emit operations
    command.check(config)
    logger.info("Models and migrations are in sync")


def _stamp(config, args):
    command.stamp(config, args.revision)
    logger.info(f"Database stamped at {args.revision}")


def _current(config, args):
    command.current(config, verbose=args.verbose)


def _history(config, args):
    command.history(config, verbose=args.verbose)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="migrate.py", description="Back office schema migrations")
    parser.add_argument("--database-url", help="Override the database URL from settings")
    commands = parser.add_subparsers(dest="command", required=True)

    upgrade = commands.add_parser("upgrade", help="Apply pending revisions")
    upgrade.add_argument("revision", nargs="?", default="head")
    upgrade.add_argument("--sql", action="store_true", help="Print SQL instead of running it")
    upgrade.set_defaults(handler=_upgrade)

    downgrade = commands.add_parser("downgrade", help="Revert revisions")
    target = downgrade.add_mutually_exclusive_group()
    target.add_argument("revision", nargs="?")
    target.add_argument("--steps", type=int, default=1)
    downgrade.add_argument("--sql", action="store_true", help="Print SQL instead of running it")
    downgrade.set_defaults(handler=_downgrade)

    revision = commands.add_parser("revision", help="Create a revision")
    revision.add_argument("-m", "--message", required=True)
    revision.add_argument("--empty", action="store_true", help="Skip autogenerate")
    revision.set_defaults(handler=_revision)

    commands.add_parser("check", help="Fail when the models need a new revision").set_defaults(handler=_check)

    stamp = commands.add_parser("stamp", help="Record a revision without running it")
    stamp.add_argument("revision", nargs="?", default="head")
    stamp.set_defaults(handler=_stamp)

    for name, handler in (("current", _current), ("history", _history)):
        sub = commands.add_parser(name)
        sub.add_argument("-v", "--verbose", action="store_true")
        sub.set_defaults(handler=handler)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    if getattr(args, "steps", 1) < 1:
        logger.error("--steps must be at least 1")
        return 2

    try:
        args.handler(alembic_config(args.database_url), args)
    except CommandError as exc:
        logger.error(f"{args.command} failed: {exc}")
        return 1
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    sys.exit(main())
