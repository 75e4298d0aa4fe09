"""remedy application entry point."""

from __future__ import annotations

import argparse
import logging
import logging.handlers
import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from remedy.api.deps import get_manager
from remedy.config import AppConfig, CapabilityConfig, load_config
from remedy.db.session import close_db, init_db
from remedy.engine.detector import ErrorDetector
from remedy.engine.events import EventBus
from remedy.engine.orchestrator import AutoFixOrchestrator
from remedy.engine.sandbox import SandboxManager
from remedy.middleware import ErrorHandlingMiddleware, LoggingMiddleware
from remedy.providers.registry import ProviderConfigError, ProviderRegistry
from remedy.store.sql import SqlFragmentStore

load_dotenv()

logger = logging.getLogger("remedy")


def _setup_logging(config: AppConfig) -> None:
    log_dir = Path(config.logging.dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=getattr(logging, config.logging.level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.handlers.RotatingFileHandler(
                log_dir / "remedy.log", maxBytes=10_000_000, backupCount=5
            ),
        ],
    )


async def _create_sandbox_providers(registry: ProviderRegistry, config: AppConfig) -> dict:
    providers = {}
    for name, cap in config.sandbox.providers.items():
        try:
            provider = await registry.create("sandbox", cap.provider, cap.config)
        except (KeyError, ImportError, ProviderConfigError) as e:
            logger.warning("Sandbox provider [%s] (%s) unavailable: %s", name, cap.provider, e)
            continue
        providers[provider.TAG] = provider
        logger.info("Sandbox provider [%s] initialized as [%s]", name, provider.TAG)
    return providers


@asynccontextmanager
async def lifespan(app: FastAPI):
    """App lifespan: initialize DB, providers, sandbox manager, orchestrator."""
    config: AppConfig = app.state.config
    _setup_logging(config)
    logger.info("Starting remedy...")

    # Database
    session_factory = await init_db(config.database.url)
    store = SqlFragmentStore(session_factory)
    logger.info("Database initialized")

    # Providers
    registry = ProviderRegistry()
    sandbox_providers = await _create_sandbox_providers(registry, config)
    ai_config = config.ai or CapabilityConfig(provider="claude_code")
    fix_provider = await registry.create("ai", ai_config.provider, ai_config.config)
    logger.info("Fix provider [%s] initialized", ai_config.provider)

    # Engine
    manager = SandboxManager(
        store,
        sandbox_providers,
        default_provider=config.sandbox.default_provider,
        probe_timeout=config.sandbox.probe_timeout,
    )
    events = EventBus()
    orchestrator = AutoFixOrchestrator(
        store=store,
        detector=ErrorDetector(manager, config.detector),
        fix_provider=fix_provider,
        manager=manager,
        events=events,
        config=config.autofix,
    )

    app.state.store = store
    app.state.sandbox_manager = manager
    app.state.events = events
    app.state.fix_provider = fix_provider
    app.state.orchestrator = orchestrator
    logger.info("Orchestrator ready")

    yield

    # Shutdown
    await manager.cleanup()
    await fix_provider.cleanup()
    await close_db()
    logger.info("remedy shutdown complete")


def create_app(config_path: str | None = None) -> FastAPI:
    config = load_config(config_path or os.environ.get("REMEDY_CONFIG", "remedy.yaml"))

    app = FastAPI(title="remedy", version="1.0.0", lifespan=lifespan)
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/health")
    async def health(request: Request):
        manager = get_manager(request)
        results = await manager.health()
        fix_provider = getattr(request.app.state, "fix_provider", None)
        if fix_provider is not None:
            results["ai"] = await fix_provider.health_check()
        return {
            "status": "ok" if all(h.healthy for h in results.values()) else "degraded",
            "providers": {name: h.to_dict() for name, h in results.items()},
        }

    from remedy.api.errors import router as errors_router
    from remedy.api.projects import router as projects_router

    app.include_router(projects_router)
    app.include_router(errors_router)

    # ASGI middleware (added last = runs first)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(ErrorHandlingMiddleware)

    return app


def cli():
    parser = argparse.ArgumentParser(
        prog="remedy", description="remedy - sandbox error detection and auto-fix service"
    )
    sub = parser.add_subparsers(dest="command")

    serve_parser = sub.add_parser("serve", help="Start the remedy server")
    serve_parser.add_argument("--host", default=None)
    serve_parser.add_argument("--port", type=int, default=None)
    serve_parser.add_argument("--reload", action="store_true")
    serve_parser.add_argument("--config", default="remedy.yaml")

    args = parser.parse_args()

    if args.command == "serve":
        os.environ["REMEDY_CONFIG"] = args.config
        config = load_config(args.config)
        host = args.host or config.server.host
        port = args.port or config.server.port
        uvicorn.run(
            "remedy.main:create_app",
            factory=True,
            host=host,
            port=port,
            reload=args.reload or config.server.reload,
        )
    else:
        parser.print_help()


if __name__ == "__main__":
    cli()
