"""FastAPI application factory with async lifespan for K8s access, token cache and the controller loop."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from vaultsync.api.health import router as health_router
from vaultsync.api.metrics import router as metrics_router
from vaultsync.config import get_settings
from vaultsync.services.controller import ControllerLoop
from vaultsync.services.events import EventRecorder
from vaultsync.services.reconciler import VaultSecretReconciler
from vaultsync.services.secret_manager import SecretManager
from vaultsync.vault.auth import TokenCache


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle.

    On startup: load K8s config, build the token cache, reconciler and
    controller loop, then start the loop.
    On shutdown: stop the loop, close cached Vault clients, then the K8s
    client (in that order to avoid using closed connections).
    """
    settings = get_settings()

    # Startup -- K8s access
    manager = SecretManager(namespace=settings.watch_namespace)
    await manager.initialize()
    app.state.secret_manager = manager

    # Startup -- Token cache lives for the whole process
    token_cache = TokenCache(
        manager.core_api,
        refresh_margin=settings.refresh_token_before,
        timeout=settings.client_timeout,
        max_retries=settings.client_max_retries,
        retry_wait_min=settings.client_retry_wait_min,
        retry_wait_max=settings.client_retry_wait_max,
    )
    app.state.token_cache = token_cache

    reconciler = VaultSecretReconciler(
        manager,
        EventRecorder(manager.core_api),
        token_cache,
        settings,
    )

    # Startup -- Controller loop
    controller = ControllerLoop(
        manager,
        reconciler,
        interval=settings.resync_interval,
        max_concurrent=settings.max_concurrent_reconciles,
    )
    await controller.start()
    app.state.controller = controller

    yield

    # Shutdown (reverse order: controller -> token cache -> k8s)
    await app.state.controller.stop()
    await app.state.token_cache.close()
    await app.state.secret_manager.close()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    This is the app factory. Uvicorn calls it with the --factory flag:
        uvicorn vaultsync.app:create_app --factory --port 8081
    """
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    app = FastAPI(
        title="Vault Secret Operator",
        version="0.1.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
    )
    app.include_router(health_router)
    app.include_router(metrics_router)

    return app
