"""Serve the console API, or the fake registry for local development.

Usage:
    fleet-console --host 0.0.0.0 --port 8080
    fleet-console --app fake-registry --port 4000
"""
import argparse

import uvicorn

from fleet_console.config import get_settings


APPS = {
    "console": "fleet_console.main:app",
    "fake-registry": "fake_registry.app:app",
}


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Run the fleet console services")
    parser.add_argument("--app", choices=sorted(APPS), default="console")
    parser.add_argument("--host", default=settings.bind_host)
    parser.add_argument("--port", type=int, default=settings.bind_port)
    parser.add_argument("--log-level", default=settings.log_level.lower())
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    uvicorn.run(
        APPS[args.app],
        host=args.host,
        port=args.port,
        log_level=args.log_level,
        reload=False,
    )


if __name__ == "__main__":
    main()
