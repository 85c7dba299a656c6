"""Command-line interface for shopfront."""

import argparse
import asyncio
import json
import os
import sys

from . import __version__
from .config import load_settings
from .db import create_database
from .errors import ShopError
from .logs import configure_logging


def _settings(args: argparse.Namespace):
    overrides = {}
    if getattr(args, "database_url", None):
        overrides["database_url"] = args.database_url
    return load_settings(**overrides)


def override_environment(args: argparse.Namespace) -> dict[str, str]:
    """Environment variables carrying command-line overrides into `create_app()`."""
    env = {}
    if getattr(args, "database_url", None):
        env["SHOPFRONT_DATABASE_URL"] = args.database_url
    return env


def cmd_serve(args: argparse.Namespace) -> int:
    """Start the API server."""
    try:
        import uvicorn

        settings = _settings(args)
        configure_logging(settings.log_level, json=settings.log_json)

        print("Starting shopfront API server...")
        print(f"Database: {settings.database_url}")
        print(f"API docs: http://{args.host}:{args.port}/docs")
        print()

        # When reload is enabled, uvicorn requires the app factory as an import string,
        # and the reloaded process only sees overrides through the environment
        if args.reload:
            os.environ.update(override_environment(args))
            uvicorn.run(
                "shopfront.api:create_app",
                factory=True,
                host=args.host,
                port=args.port,
                reload=True,
            )
            return 0

        from .api import create_app

        uvicorn.run(
            create_app(settings),
            host=args.host,
            port=args.port,
            workers=1,  # The cart gate is process-local
        )
        return 0

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_init_db(args: argparse.Namespace) -> int:
    """Create database tables."""
    settings = _settings(args)

    async def run() -> None:
        _, engine = await create_database(settings.database_url)
        await engine.dispose()

    asyncio.run(run())
    print(f"Initialized database at {settings.database_url}")
    return 0


def cmd_seed_admin(args: argparse.Namespace) -> int:
    """Create the admin account."""
    from .api import seed_admin
    from .user_store import UserStore

    settings = _settings(args)
    email = args.email or settings.admin_seed_email
    password = args.password or settings.admin_seed_password
    if not email or not password:
        print("Error: admin email and password are required", file=sys.stderr)
        return 1

    async def run():
        session_factory, engine = await create_database(settings.database_url)
        try:
            return await seed_admin(UserStore(session_factory), email, password)
        finally:
            await engine.dispose()

    try:
        user = asyncio.run(run())
    except ShopError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if user is None:
        print(f"Admin {email} already exists")
    else:
        print(f"Created admin {user.email} ({user.id})")
    return 0


def cmd_stats(args: argparse.Namespace) -> int:
    """Print store statistics."""
    from .catalog_store import ProductStore
    from .order_store import OrderStore
    from .user_store import UserStore

    settings = _settings(args)

    async def run() -> dict:
        session_factory, engine = await create_database(settings.database_url)
        try:
            orders = OrderStore(session_factory)
            return {
                "total_orders": await orders.count_orders(),
                "pending_orders": await orders.count_orders(status="pending"),
                "total_products": await ProductStore(session_factory).count_products(),
                "total_customers": await UserStore(session_factory).count_users(role="customer"),
                "total_revenue": str(await orders.paid_revenue()),
            }
        finally:
            await engine.dispose()

    stats = asyncio.run(run())
    if args.json:
        print(json.dumps(stats, indent=2))
    else:
        for key, value in stats.items():
            print(f"{key.replace('_', ' ').capitalize()}: {value}")
    return 0


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shopfront",
        description="E-commerce backend: catalog, carts, orders and payments",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--database-url", help="Override SHOPFRONT_DATABASE_URL")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    serve_parser.add_argument("--port", "-p", type=int, default=4000, help="Port to bind to")
    serve_parser.add_argument("--reload", action="store_true", help="Enable auto-reload for development")

    # init-db
    subparsers.add_parser("init-db", help="Create database tables")

    # seed-admin
    seed_parser = subparsers.add_parser("seed-admin", help="Create the admin account")
    seed_parser.add_argument("--email", help="Admin email (defaults to SHOPFRONT_ADMIN_SEED_EMAIL)")
    seed_parser.add_argument("--password", help="Admin password (defaults to SHOPFRONT_ADMIN_SEED_PASSWORD)")

    # stats
    stats_parser = subparsers.add_parser("stats", help="Show order, product and customer counts")
    stats_parser.add_argument("--json", action="store_true", help="Output as JSON")

    return parser


def main() -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 0

    commands = {
        "serve": cmd_serve,
        "init-db": cmd_init_db,
        "seed-admin": cmd_seed_admin,
        "stats": cmd_stats,
    }

    cmd_func = commands.get(args.command)
    if cmd_func:
        return cmd_func(args)

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
