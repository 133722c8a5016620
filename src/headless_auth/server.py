"""
Headless auth server.

Exposes the GitHub device flow bridge over HTTP: device authorization and
polling for headless MCP clients, client registration, the token endpoint
and bearer verification backed by internally minted session tokens.
"""

import argparse
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core.config import AuthSettings, settings as default_settings
from .core.exceptions import HeadlessAuthError, NotSupportedError, ProviderUnavailableError
from .providers.factory import get_auth_provider
from .providers.github import GitHubDeviceProvider
from .routes.device_flow import router as device_flow_router
from .routes.oauth import router as oauth_router
from .routes.well_known import router as well_known_router
from .services.engine import ServerAuthorizationEngine
from .stores.clients import RegisteredClientStore

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[AuthSettings] = None,
    provider: Optional[GitHubDeviceProvider] = None,
    clients: Optional[RegisteredClientStore] = None,
) -> FastAPI:
    """Build the FastAPI application and its authorization engine.

    Raises:
        ConfigurationError: If no provider is given and the GitHub
            credential pair is not configured.
    """
    settings = settings or default_settings
    provider = provider or get_auth_provider(settings)
    clients = clients or RegisteredClientStore(settings.clients_file_path)
    engine = ServerAuthorizationEngine.from_settings(settings, provider=provider, clients=clients)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        clients.load()
        engine.start()
        try:
            yield
        finally:
            await engine.stop()

    app = FastAPI(
        title="Headless Auth Server",
        description="OAuth device flow bridge between headless MCP clients and GitHub",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.engine = engine
    app.state.clients = clients

    cors_origins_list = [origin.strip() for origin in settings.cors_origins.split(",")] if settings.cors_origins != "*" else ["*"]
    logger.info(f"CORS origins configured: {cors_origins_list}")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["WWW-Authenticate"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info(f"{request.method} {request.url.path}")
        return await call_next(request)

    @app.exception_handler(HeadlessAuthError)
    async def headless_auth_error_handler(request: Request, exc: HeadlessAuthError):
        status_code = 502 if isinstance(exc, ProviderUnavailableError) else 400
        if not isinstance(exc, NotSupportedError):
            logger.warning(f"{request.method} {request.url.path} failed: {exc.error} {exc.description}")
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": "server_error", "error_description": "Internal server error"},
        )

    api_prefix = settings.auth_api_prefix.rstrip("/")
    app.include_router(well_known_router, prefix="", tags=["well-known"])
    app.include_router(device_flow_router, prefix=api_prefix, tags=["device-flow"])
    app.include_router(oauth_router, prefix=api_prefix, tags=["oauth"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "healthy", "service": "headless-auth-server"}

    return app


def parse_arguments():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Headless Auth Server")

    parser.add_argument(
        "--host",
        type=str,
        default="0.0.0.0",
        help="Host for the server to listen on (default: 0.0.0.0)",
    )

    parser.add_argument(
        "--port",
        type=int,
        default=3000,
        help="Port for the server to listen on (default: 3000)",
    )

    return parser.parse_args()


def main():
    """Run the server"""
    args = parse_arguments()
    default_settings.configure_logging()

    app = create_app()

    logger.info(f"Starting headless auth server on {args.host}:{args.port}")
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
