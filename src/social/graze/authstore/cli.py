import argparse
import asyncio
import json
import logging
import os
import sys
from logging.config import dictConfig
from typing import Any, Optional

from aio_statsd import TelegrafStatsdClient
import sentry_sdk
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from social.graze.authstore.adapter import SQLAlchemyAdapter
from social.graze.authstore.config import Settings
from social.graze.authstore.errors import AdapterError, SessionTableNotConfigured
from social.graze.authstore.metrics import create_metrics_client

logger = logging.getLogger(__name__)


def configure_logging():
    logging_config_file = os.getenv("LOGGING_CONFIG_FILE", "")

    if len(logging_config_file) > 0:
        with open(logging_config_file) as fl:
            dictConfig(json.load(fl))
        return

    logging.basicConfig()
    logging.getLogger().setLevel(logging.DEBUG)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="authstore", description="Inspect and maintain authentication storage"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    get_user = subparsers.add_parser("get-user", help="Show a user")
    get_user.add_argument("user_id", help="The user id.")

    get_session = subparsers.add_parser("get-session", help="Show a session")
    get_session.add_argument("session_id", help="The session id.")

    get_user_and_session = subparsers.add_parser(
        "get-user-and-session", help="Show a session and the user it belongs to"
    )
    get_user_and_session.add_argument("session_id", help="The session id.")

    list_keys = subparsers.add_parser("list-keys", help="List the keys of a user")
    list_keys.add_argument("user_id", help="The user id.")

    list_sessions = subparsers.add_parser(
        "list-sessions", help="List the sessions of a user"
    )
    list_sessions.add_argument("user_id", help="The user id.")

    purge_user = subparsers.add_parser(
        "purge-user", help="Delete a user together with its sessions and keys"
    )
    purge_user.add_argument("user_id", help="The user id.")

    return parser


def _print_json(value: Any) -> None:
    print(json.dumps(value, indent=2, sort_keys=True, default=str))


async def run_command(adapter: SQLAlchemyAdapter, args: argparse.Namespace) -> None:
    command = args.command

    if command == "get-user":
        _print_json(await adapter.get_user(args.user_id))
    elif command == "get-session":
        _print_json(await adapter.get_session(args.session_id))
    elif command == "get-user-and-session":
        user_and_session = await adapter.get_user_and_session(args.session_id)
        _print_json(
            {"user": user_and_session.user, "session": user_and_session.session}
        )
    elif command == "list-keys":
        _print_json(await adapter.get_keys_by_user_id(args.user_id))
    elif command == "list-sessions":
        _print_json(await adapter.get_sessions_by_user_id(args.user_id))
    elif command == "purge-user":
        # Deleting a user never cascades, dependents go first.
        if adapter.tables.session is not None:
            await adapter.delete_sessions_by_user_id(args.user_id)
        await adapter.delete_keys_by_user_id(args.user_id)
        await adapter.delete_user(args.user_id)
        logger.info("purged user %s", args.user_id)


async def realMain(argv: Optional[list] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings()

    if settings.sentry_dsn:
        sentry_sdk.init(dsn=settings.sentry_dsn)

    telegraf_client = None
    if settings.metrics_backend.lower() == "telegraf":
        telegraf_client = TelegrafStatsdClient(
            host=settings.statsd_host, port=settings.statsd_port, debug=settings.debug
        )
        await telegraf_client.connect()

    metrics_client = create_metrics_client(
        settings.metrics_backend,
        telegraf_client=telegraf_client,
        prefix=settings.statsd_prefix,
    )

    engine = create_async_engine(settings.database_dsn)
    database_session_maker = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )
    adapter = SQLAlchemyAdapter(
        database_session_maker,
        settings.table_names(),
        metrics_client=metrics_client,
        isolation_level=settings.isolation_level,
    )

    try:
        await run_command(adapter, args)
    except AdapterError as e:
        print(f"{args.command}: {e.code.value}", file=sys.stderr)
        return 1
    except SessionTableNotConfigured as e:
        print(str(e), file=sys.stderr)
        return 1
    except Exception as e:
        sentry_sdk.capture_exception(e)
        logger.exception("%s: Exception", args.command)
        return 1
    finally:
        await metrics_client.close()
        await engine.dispose()

    return 0


def main() -> None:
    configure_logging()
    sys.exit(asyncio.run(realMain()))


if __name__ == "__main__":
    main()
