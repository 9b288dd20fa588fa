"""
CLI entry point for the FlowForge cache service.

Usage:
    python main.py api [--host 0.0.0.0] [--port 8000]
    python main.py cleanup
    python main.py stats [--platform n8n]
"""

import argparse
import json
import sys

from flowforge.cache import build_cache_store
from flowforge.config import get_settings
from flowforge.exceptions import FlowForgeException
from flowforge.logging_config import configure_logging


def cmd_api(args):
    """Start the FastAPI server with uvicorn."""
    import uvicorn

    from flowforge.api import create_app

    settings = get_settings()
    app = create_app(settings=settings)
    host = args.host or settings.api.host
    port = args.port or settings.api.port
    print(f"Starting FlowForge cache API on {host}:{port}")
    uvicorn.run(app, host=host, port=port, log_config=None)


def cmd_cleanup(args):
    """Run one cleanup pass against the configured backend."""
    store = build_cache_store(get_settings())
    try:
        report = store.cleanup()
    finally:
        store.close()
    print(json.dumps(report.model_dump(), indent=2))


def cmd_stats(args):
    """Print statistics for the configured backend."""
    store = build_cache_store(get_settings())
    try:
        stats = store.get_stats(platform=args.platform)
    finally:
        store.close()
    print(json.dumps(stats.model_dump(), indent=2))


def main():
    parser = argparse.ArgumentParser(
        description="FlowForge - workflow generation cache"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # api
    p_api = subparsers.add_parser("api", help="Start REST API server")
    p_api.add_argument("--host", default=None)
    p_api.add_argument("--port", type=int, default=None)

    # cleanup
    subparsers.add_parser("cleanup", help="Remove expired cache entries")

    # stats
    p_stats = subparsers.add_parser("stats", help="Show cache statistics")
    p_stats.add_argument("--platform", default=None, help="Restrict to one platform")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    commands = {
        "api": cmd_api,
        "cleanup": cmd_cleanup,
        "stats": cmd_stats,
    }
    try:
        configure_logging(get_settings().logging)
        commands[args.command](args)
    except FlowForgeException as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
