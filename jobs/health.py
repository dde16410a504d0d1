"""
Health check server for the indexer worker.

Provides HTTP endpoints for health checks and monitoring.
"""

import asyncio

from aiohttp import web
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from app.services.indexing.health import HealthMonitor, HealthStatus

MONITOR_KEY = web.AppKey("health_monitor", HealthMonitor)
SCHEDULER_KEY = web.AppKey("scheduler", AsyncIOScheduler)

# Status code per overall status; degraded still serves traffic
STATUS_CODES = {
    HealthStatus.HEALTHY: 200,
    HealthStatus.DEGRADED: 200,
    HealthStatus.UNHEALTHY: 503,
}


async def health_handler(request: web.Request) -> web.Response:
    """
    Health check endpoint.

    Returns:
        JSON health report
    """
    monitor = request.app[MONITOR_KEY]
    report = await monitor.get_system_health()
    return web.json_response(report.to_dict(), status=STATUS_CODES[report.status])


async def alerts_handler(request: web.Request) -> web.Response:
    """
    Critical alerts endpoint.

    Returns:
        JSON response with unhealthy issues only
    """
    monitor = request.app[MONITOR_KEY]
    alerts = await monitor.critical_alerts()
    return web.json_response(
        {
            "alerts": alerts,
            "count": len(alerts),
            "requires_attention": len(alerts) > 0,
        }
    )


async def readiness_handler(request: web.Request) -> web.Response:
    """
    Readiness check endpoint.

    Returns:
        JSON response indicating if the worker is ready: scheduler
        running and system not unhealthy
    """
    scheduler = request.app.get(SCHEDULER_KEY)
    if scheduler is not None and not scheduler.running:
        return web.json_response({"status": "not_ready", "ready": False}, status=503)

    report = await request.app[MONITOR_KEY].get_system_health()
    if report.status == HealthStatus.UNHEALTHY:
        return web.json_response(
            {"status": "not_ready", "ready": False, "issues": report.issues},
            status=503,
        )

    return web.json_response({"status": "ready", "ready": True})


async def liveness_handler(request: web.Request) -> web.Response:
    """
    Liveness check endpoint.

    Returns:
        JSON response indicating if the process is alive
    """
    return web.json_response(
        {
            "status": "alive",
            "alive": True,
        }
    )


def create_health_app(
    monitor: HealthMonitor, scheduler: AsyncIOScheduler | None = None
) -> web.Application:
    """Build the aiohttp application with all health routes."""
    app = web.Application()
    app[MONITOR_KEY] = monitor
    if scheduler is not None:
        app[SCHEDULER_KEY] = scheduler
    app.router.add_get("/health", health_handler)
    app.router.add_get("/health/alerts", alerts_handler)
    app.router.add_get("/readiness", readiness_handler)
    app.router.add_get("/liveness", liveness_handler)
    return app


async def start_health_server(
    monitor: HealthMonitor,
    scheduler: AsyncIOScheduler | None = None,
    host: str = "0.0.0.0",
    port: int = 8080,
) -> tuple[web.AppRunner, web.TCPSite]:
    """
    Start health check server.

    Args:
        monitor: Health monitor backing the endpoints
        scheduler: Periodic job scheduler checked by readiness
        host: Host to bind to
        port: Port to bind to

    Returns:
        Tuple of (AppRunner, TCPSite) for cleanup
    """
    runner = web.AppRunner(create_health_app(monitor, scheduler))
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()

    logger.info(f"Health check server started on {host}:{port}")
    logger.info(f"  - Health: http://{host}:{port}/health")
    logger.info(f"  - Alerts: http://{host}:{port}/health/alerts")
    logger.info(f"  - Readiness: http://{host}:{port}/readiness")
    logger.info(f"  - Liveness: http://{host}:{port}/liveness")

    return runner, site


async def stop_health_server(
    runner: web.AppRunner,
    timeout: int = 5,
) -> None:
    """
    Stop health check server gracefully.

    Args:
        runner: AppRunner to cleanup
        timeout: Maximum time to wait for cleanup in seconds
    """
    logger.info("Stopping health check server...")
    try:
        await asyncio.wait_for(runner.cleanup(), timeout=timeout)
        logger.info("Health check server stopped successfully")
    except TimeoutError:
        logger.warning(f"Health check server cleanup timed out after {timeout}s")
    except Exception as e:
        logger.error(f"Error stopping health check server: {e}")
