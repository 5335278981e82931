from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse, RedirectResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST

from .. import __version__
from ..sync.metrics import SyncMetrics
from ..sync.orchestrator import MirrorService
from ..utils.logger import LoggerSetup

logger = LoggerSetup.setup(__name__)


def create_app(metrics: SyncMetrics, service: Optional[MirrorService] = None) -> FastAPI:
    """
    Build the metrics HTTP app.

    Args:
        metrics: Registry rendered at /metrics
        service: Mirror service reported by /health and /status, if any
    """
    app = FastAPI(
        title="pgmirror",
        description="Postgres table mirroring metrics",
        version=__version__,
        docs_url=None,
        redoc_url=None
    )

    @app.get("/", include_in_schema=False)
    async def root():
        return RedirectResponse(url="/metrics", status_code=302)

    @app.get("/metrics")
    async def get_metrics():
        """Get Prometheus metrics"""
        return Response(content=metrics.render(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        if not service:
            raise HTTPException(status_code=503, detail="Service not initialized")

        return {
            "status": "healthy",
            "service_status": service.status.value
        }

    @app.get("/status")
    async def get_status():
        """Get detailed service status"""
        if not service:
            raise HTTPException(status_code=503, detail="Service not initialized")

        return {
            "status": service.get_service_status()
        }

    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc):
        """Global exception handler"""
        logger.error(f"Unhandled error: {exc}")
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"}
        )

    return app
