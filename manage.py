import argparse
import logging
import sys
from typing import Optional, Sequence

from config import get_settings
from database import (
    create_db_engine,
    make_session_factory,
    session_scope,
    upgrade_schema,
    wait_for_database,
)
from services import CategoryService, seed_demo_data

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _ready_engine():
    settings = get_settings()
    engine = create_db_engine(settings.database_url)
    wait_for_database(
        engine,
        attempts=settings.db_connect_attempts,
        delay=settings.db_connect_delay_secs,
    )
    return engine


def migrate() -> None:
    engine = _ready_engine()
    upgrade_schema(engine)

    with session_scope(make_session_factory(engine)) as session:
        created = CategoryService(session).seed_defaults(commit=False)
    logger.info(f"seed_categories: created={created}")
    engine.dispose()


def seed_demo() -> None:
    engine = _ready_engine()
    with session_scope(make_session_factory(engine)) as session:
        inserted = seed_demo_data(session)
    if inserted:
        logger.info(f"seed_demo: transactions={inserted}")
    else:
        logger.info("seed_demo: ledger not empty, nothing to do")
    engine.dispose()


def serve(host: str, port: Optional[int]) -> None:
    import uvicorn

    uvicorn.run("main:app", host=host, port=port or get_settings().port)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Transaction service management")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("migrate", help="Create or upgrade the schema and seed categories")
    sub.add_parser("seed-demo", help="Insert demo transactions and budgets (idempotent)")
    serve_parser = sub.add_parser("serve", help="Run the HTTP server")
    serve_parser.add_argument("--host", default="0.0.0.0")
    serve_parser.add_argument("--port", type=int, default=None)
    args = parser.parse_args(argv)

    try:
        if args.command == "migrate":
            migrate()
            logger.info("Migration completed successfully")
        elif args.command == "seed-demo":
            seed_demo()
        else:
            serve(args.host, args.port)
    except Exception:
        logger.exception(f"{args.command} failed")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
