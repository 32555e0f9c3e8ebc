"""FastAPI application factory and command line entry point."""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from typing import List, Optional
import argparse
import asyncio
import logging

from dockyards.api import auth, clusters, credentials, deployments, health, orgs
from dockyards.api.errors import register_exception_handlers
from dockyards.config import Settings
from dockyards.container import Container, build_container
from dockyards.database import init_db
from dockyards.garbage import run_garbage_loop

logger = logging.getLogger(__name__)

LOG_LEVELS = ["debug", "info", "warning", "error"]


def configure_logging(level: str = "info"):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )
    logging.getLogger("sqlalchemy").setLevel(logging.ERROR)
    logging.getLogger("uvicorn.access").setLevel(logging.ERROR)  # Suppress HTTP access logs
    logging.getLogger("httpx").setLevel(logging.WARNING)


def create_app(settings: Optional[Settings] = None, container: Optional[Container] = None) -> FastAPI:
    """Create and configure FastAPI application.

    When ``container`` is omitted the services are built on startup from
    ``settings``.
    """
    if settings is None:
        settings = container.settings if container is not None else Settings()

    app = FastAPI(
        title="Dockyards API",
        description="Managed Kubernetes control plane",
        version=settings.APP_VERSION,
    )

    register_exception_handlers(app)

    # Middleware
    if settings.FLAG_USE_CORS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.CORS_ORIGINS,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Routes
    app.include_router(health.router)
    app.include_router(auth.router)
    app.include_router(orgs.router)
    app.include_router(credentials.router)
    app.include_router(clusters.router)
    app.include_router(deployments.router)

    app.state.container = container
    app.state.garbage_task = None

    @app.on_event("startup")
    async def startup_event():
        """Build services, initialize database and start the garbage loop."""
        if app.state.container is None:
            app.state.container = build_container(settings)
        services = app.state.container

        await init_db(services.engine)

        app.state.garbage_task = asyncio.create_task(run_garbage_loop(
            settings.DEL_GARBAGE_INTERVAL,
            services.cluster_service.delete_garbage,
            services.cloud_service.delete_garbage,
        ))

    @app.on_event("shutdown")
    async def shutdown_event():
        task = app.state.garbage_task
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if app.state.container is not None:
            await app.state.container.close()

    return app


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="dockyards-backend", description="Dockyards backend API server")
    parser.add_argument("--log-level", choices=LOG_LEVELS, default=None, help="log level (default: info)")
    parser.add_argument("--use-inmem-db", action="store_true", help="use an in-memory SQLite database")
    parser.add_argument("--trust-insecure", action="store_true", help="skip TLS verification of upstream services")
    parser.add_argument("--del-garbage-interval", type=int, default=None, help="seconds between garbage deletion attempts (default: 60)")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=9000)
    return parser.parse_args(argv)


def settings_from_args(args: argparse.Namespace) -> Settings:
    """Settings from the environment, with command line flags taking precedence."""
    overrides = {}
    if args.log_level is not None:
        overrides["LOG_LEVEL"] = args.log_level
    if args.use_inmem_db:
        overrides["USE_INMEM_DB"] = True
    if args.trust_insecure:
        overrides["TRUST_INSECURE"] = True
    if args.del_garbage_interval is not None:
        overrides["DEL_GARBAGE_INTERVAL"] = args.del_garbage_interval
    return Settings(**overrides)


def main(argv: Optional[List[str]] = None):
    import uvicorn

    args = parse_args(argv)
    settings = settings_from_args(args)

    configure_logging(settings.LOG_LEVEL)
    logger.info(f"Starting dockyards backend on {args.host}:{args.port}")
    if settings.USE_INMEM_DB:
        logger.warning("Using in-memory database, all data is lost on exit")

    uvicorn.run(create_app(settings), host=args.host, port=args.port)


if __name__ == "__main__":
    main()
