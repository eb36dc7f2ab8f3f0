import os
import time
import logging
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI

# Provider keys and backends are read at import time by the pipeline modules.
load_dotenv()

from . import metrics
from .auth_middleware import WorkerAuthMiddleware
from .pipeline import routes as pipeline_routes

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

SHUTDOWN_GRACE_SECONDS = float(os.environ.get("SHUTDOWN_GRACE_SECONDS", "30"))


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Content generator worker starting up...")
    metrics.set_gauge("start_time", time.time())
    yield
    # Shutdown
    service = pipeline_routes._service
    if service is not None and service.in_flight:
        logger.warning(f"Shutting down with {len(service.in_flight)} video task(s) in flight: {service.in_flight}")
        await service.wait_for_background_tasks(timeout=SHUTDOWN_GRACE_SECONDS)
    logger.info("Content generator worker shut down")


app = FastAPI(lifespan=lifespan)
app.add_middleware(WorkerAuthMiddleware)
app.include_router(pipeline_routes.router)


@app.get("/health")
def health_check():
    """Verify worker is running and env vars are configured."""
    return {
        "status": "ok",
        "openai_api_key_set": bool(os.environ.get("OPENAI_API_KEY")),
        "eleven_labs_api_key_set": bool(
            os.environ.get("ELEVEN_LABS_API_KEY") or os.environ.get("NEXT_PUBLIC_ELEVEN_LABS_API_KEY")
        ),
        "hedra_api_key_set": bool(os.environ.get("HEDRA_API_KEY") or os.environ.get("NEXT_PUBLIC_HEDRA_API_KEY")),
        "supabase_url_set": bool(os.environ.get("SUPABASE_URL") or os.environ.get("NEXT_PUBLIC_SUPABASE_URL")),
    }


@app.get("/metrics")
def metrics_endpoint():
    """Return a snapshot of all worker metrics."""
    service = pipeline_routes._service
    if service is not None:
        metrics.set_gauge("video.in_flight", len(service.in_flight))
    return metrics.get_snapshot()


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    uvicorn.run("charactercast.main:app", host="0.0.0.0", port=port, reload=True)
