#!/usr/bin/env python3
"""
Local development server runner.

Runs the relay API using uvicorn for fast local development, and
optionally the delivery worker against the configured queues.

Usage:
    python run_local.py
    python run_local.py --port 8000
    python run_local.py --reload  # Auto-reload on code changes
    python run_local.py --worker  # Run the delivery worker instead
"""

import argparse
import asyncio
import signal
import sys
from pathlib import Path

project_root = Path(__file__).parent

try:
    import uvicorn
except ImportError:
    print("ERROR: uvicorn is not installed.")
    print("Please install dependencies: pip install -e '.[dev]'")
    sys.exit(1)


async def run_worker() -> None:
    from relay.config.settings import Settings
    from relay.delivery.worker import DeliveryWorker
    from relay.dependencies import build_services

    settings = Settings()
    services = build_services(settings)
    pipeline = services.require_pipeline()
    worker = DeliveryWorker(
        pipeline,
        priority_queue=pipeline.priority_queue,
        standard_queue=pipeline.standard_queue,
        settings=settings
    )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await worker.run(stop)


def main():
    parser = argparse.ArgumentParser(
        description="Run the relay API locally with uvicorn"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to run the server on (default: 8000)"
    )
    parser.add_argument(
        "--host",
        type=str,
        default="127.0.0.1",
        help="Host to bind to (default: 127.0.0.1)"
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload on code changes (recommended for development)"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="info",
        choices=["critical", "error", "warning", "info", "debug", "trace"],
        help="Log level for uvicorn (default: info)"
    )
    parser.add_argument(
        "--worker",
        action="store_true",
        help="Run the delivery worker instead of the API"
    )

    args = parser.parse_args()

    env_file = project_root / ".env"
    if not env_file.exists():
        print("WARNING: .env file not found, using environment variables and defaults.")
        print("Relevant variables:")
        print("  - STAGE (dev enables http:// webhook targets)")
        print("  - AWS_ENDPOINT_URL (local AWS stack)")
        print("  - MESSAGE_QUEUE_URL / PRIORITY_QUEUE_URL")
        print("  - WEBSOCKET_ENDPOINT_URL")

    if args.worker:
        asyncio.run(run_worker())
        return

    print("=" * 60)
    print("Starting Marketplace Relay API (Local Development)")
    print("=" * 60)
    print(f"Server: http://{args.host}:{args.port}")
    print(f"API Docs: http://{args.host}:{args.port}/docs")
    print(f"Health: http://{args.host}:{args.port}/health")
    print("=" * 60)
    if args.reload:
        print("Auto-reload: ENABLED (code changes will restart server)")
    print()

    uvicorn.run(
        "relay.main:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level,
        reload_dirs=[str(project_root / "src")] if args.reload else None
    )


if __name__ == "__main__":
    main()
