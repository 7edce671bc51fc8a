"""
Main entry point: serves the crossflow API with uvicorn.
"""

import argparse
import importlib
import sys
from typing import Any

import uvicorn

from . import __version__
from .config.container import get_container
from .config.settings import get_settings
from .observability.logging import get_logger, setup_logging

logger = get_logger(__name__)


def load_engine(target: str) -> Any:
    """
    Resolve ``package.module:attribute`` to an execution engine.

    A callable attribute is treated as a factory and called without
    arguments.
    """
    module_name, _, attribute = target.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"Engine must be given as 'module:attribute', got {target!r}")

    engine = getattr(importlib.import_module(module_name), attribute)
    if callable(engine) and not hasattr(engine, "execute_test"):
        engine = engine()
    return engine


def main(argv=None):
    """Parse arguments and run the API server."""
    parser = argparse.ArgumentParser(description="crossflow orchestration server")
    parser.add_argument("--host", default=None, help="Host to bind to")
    parser.add_argument("--port", type=int, default=None, help="Port to bind to")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload")
    parser.add_argument(
        "--engine",
        default=None,
        help="Execution engine as 'module:attribute' (instance or zero-argument factory)",
    )
    parser.add_argument("--log-level", default=None, help="Override the configured log level")
    parser.add_argument("--version", action="store_true", help="Show version")

    args = parser.parse_args(argv if argv is not None else [])

    if args.version:
        print(f"crossflow v{__version__}")
        return

    settings = get_settings()
    setup_logging(args.log_level or settings.observability.log_level)

    app: Any = "crossflow.api.server:app"
    if args.engine:
        if args.reload:
            parser.error("--reload cannot be combined with --engine")
        get_container().register_singleton("execution_engine", load_engine(args.engine))
        from .api.server import app as loaded_app

        app = loaded_app

    logger.info(
        "crossflow initialized",
        environment=settings.environment,
        engine=args.engine or "unset",
        tracing_enabled=settings.observability.enable_tracing,
    )

    uvicorn.run(
        app,
        host=args.host or settings.api.host,
        port=args.port or settings.api.port,
        reload=args.reload or settings.api.reload,
    )


def cli_main():
    """CLI entry point."""
    try:
        main(sys.argv[1:])
        sys.exit(0)
    except KeyboardInterrupt:
        print("\ncrossflow shutdown")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Startup failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    cli_main()
