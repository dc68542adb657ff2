from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from aegisx.api.contracts import HealthResponse
from aegisx.api.http_setup import register_exception_handlers, register_http_middleware
from aegisx.auth.audit import AuditPublisher
from aegisx.auth.middleware import create_auth_middleware
from aegisx.auth.rate_limiter import LoginRateLimiter
from aegisx.auth.repository import AuthRepository
from aegisx.auth.router import create_auth_router
from aegisx.auth.service import AuthService
from aegisx.core.config import AppConfig
from aegisx.core.logging import setup_logging
from aegisx.core.mongo_migrations import apply_mongo_migrations

LOGGER = logging.getLogger(__name__)


def create_app(config: AppConfig | None = None) -> FastAPI:
    if config is None:
        load_dotenv()
        config = AppConfig.from_env()
    setup_logging(config.logging.level)

    config.storage.runtime_dir.mkdir(parents=True, exist_ok=True)
    apply_mongo_migrations(config.storage)

    auth_repo = AuthRepository(config.storage)
    audit = AuditPublisher.from_config(config.audit)
    state_db_path = Path(config.security.state_sqlite_path).resolve()
    login_rate_limiter = LoginRateLimiter(
        database_path=state_db_path,
        max_attempts=config.security.login_rate_limit_max_attempts,
        window_seconds=config.security.login_rate_limit_window_seconds,
        lock_seconds=config.security.login_rate_limit_lock_seconds,
    )
    auth_service = AuthService(
        auth_repo, config.auth, audit=audit, login_throttle=login_rate_limiter
    )
    auth_service.bootstrap_admin_user()

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        audit.close()
        login_rate_limiter.close()
        auth_repo.close()

    app = FastAPI(title="AegisX Auth API", version="1.0.0", lifespan=lifespan)

    app.include_router(create_auth_router(auth_service))
    # Registered before the shared middleware so it runs inside the
    # correlation-id scope and under the request size limit.
    app.middleware("http")(create_auth_middleware(auth_service))
    register_http_middleware(app, config=config, logger=LOGGER)
    # Outermost, so preflight requests are answered before authentication.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.security.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-API-Key", "X-Request-ID"],
    )
    register_exception_handlers(app, logger=LOGGER)

    @app.get("/api/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        return HealthResponse(
            status="ok", storage="mongodb" if auth_repo.uses_mongo else "file"
        )

    app.state.auth_service = auth_service
    app.state.rate_limiter = login_rate_limiter
    return app
