"""FastAPI application entry point with lifespan management.

Startup: load settings and route config, build the proxy pool (plain URLs
plus premium provider accounts), probe it, assemble the router with its
detection feedback and start every background loop.
Shutdown: stop the router loops, then the pool loops.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from stealth_router.config.routing import load_route_config
from stealth_router.config.settings import RouterSettings
from stealth_router.detection.behavior_adaptor import BehaviorAdaptor
from stealth_router.detection.persona import PersonaRotator
from stealth_router.detection.signal_monitor import SignalMonitor
from stealth_router.logging_config import configure_logging
from stealth_router.middleware.error_handler import register_error_handlers
from stealth_router.proxy.manager import ProxyPoolManager
from stealth_router.proxy.providers import ProviderAccount, build_endpoints
from stealth_router.resilience.pacer import DomainPacer
from stealth_router.routers.health import create_health_router
from stealth_router.routing.router import AdaptiveRouter
from stealth_router.strategies.http import HttpStrategy
from stealth_router.strategies.registry import StrategyImplementationRegistry

logger = logging.getLogger(__name__)


def provider_accounts(settings: RouterSettings) -> list[ProviderAccount]:
    """Premium provider accounts with both credentials configured."""
    accounts = []
    for provider in ("brightdata", "oxylabs", "smartproxy"):
        username = getattr(settings, f"{provider}_username")
        password = getattr(settings, f"{provider}_password")
        if username and password:
            accounts.append(
                ProviderAccount(
                    provider=provider,
                    username=username,
                    password=password,
                    sticky=settings.sticky_sessions,
                    country=getattr(settings, f"{provider}_country"),
                )
            )
    return accounts


def build_proxy_pool(settings: RouterSettings) -> ProxyPoolManager | None:
    """Pool from plain proxy URLs and provider accounts; ``None`` when neither is set."""
    pool = ProxyPoolManager(
        max_failures=settings.proxy_max_failures,
        min_success_rate=settings.proxy_min_success_rate,
        health_check_interval_seconds=settings.proxy_health_check_interval_seconds,
        rotation_interval_seconds=settings.proxy_rotation_interval_seconds,
        probe_url=settings.proxy_probe_url,
        probe_timeout_seconds=settings.proxy_probe_timeout_seconds,
    )
    pool.add_urls(settings.proxy_endpoints)
    for account in provider_accounts(settings):
        pool.add_endpoints(build_endpoints(account))
    return pool if pool.endpoints else None


def build_strategies(proxy_pool: ProxyPoolManager | None) -> StrategyImplementationRegistry:
    """HTTP implementations for the built-in ``direct`` and ``premium_proxy`` strategies."""
    strategies = StrategyImplementationRegistry()
    strategies.register(HttpStrategy("direct"))
    if proxy_pool is not None:
        strategies.register(HttpStrategy("premium_proxy", pool=proxy_pool))
    return strategies


def build_router(
    settings: RouterSettings, proxy_pool: ProxyPoolManager | None
) -> AdaptiveRouter:
    config = load_route_config(settings.route_config_path)
    pacer = (
        DomainPacer(tokens=settings.pacing_tokens, interval_seconds=settings.pacing_interval_seconds)
        if settings.pacing_enabled
        else None
    )
    return AdaptiveRouter(
        config,
        proxy_pool=proxy_pool,
        signal_monitor=SignalMonitor(
            slow_load_threshold_ms=settings.slow_load_threshold_ms,
            history_seconds=settings.signal_history_seconds,
        ),
        behavior_adaptor=BehaviorAdaptor(),
        persona_rotator=PersonaRotator(),
        pacer=pacer,
        block_on_challenge=settings.block_on_challenge,
        abort_backoff_ms=settings.abort_backoff_ms,
        implementations=build_strategies(proxy_pool),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown logic."""
    settings = RouterSettings()

    configure_logging(settings.log_level, json_output=settings.json_logs)
    logger.info("Starting routing service on port %d", settings.port)

    proxy_pool = build_proxy_pool(settings)
    if proxy_pool is not None:
        await proxy_pool.initialize()
        await proxy_pool.start()

    router = build_router(settings, proxy_pool)
    await router.start()

    app.include_router(create_health_router(router=router, proxy_pool=proxy_pool))

    logger.info("Routing service started successfully")

    yield

    # --- Shutdown ---
    logger.info("Shutting down routing service…")
    await router.stop()
    if proxy_pool is not None:
        await proxy_pool.stop()
    logger.info("Routing service shut down")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Stealth Router",
        version="1.0.0",
        lifespan=lifespan,
    )
    register_error_handlers(app)
    return app


app = create_app()
