import uvicorn
import time
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from starlette.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from surgeon.api.issues import router as issues_router
from surgeon.api.dashboard import router as dashboard_router
from surgeon.api.deps import get_orchestrator
from surgeon.core.config import DEMO_MODE, missing_env
from surgeon.utils.logging_config import setup_logging

# Initialize enhanced logging
setup_logging(level=logging.INFO)
logger = logging.getLogger("main")


# ---------------------------------------------------------------------------
# Lifespan: drain running pipelines on shutdown
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    if get_orchestrator.cache_info().currsize:
        logger.info("Shutting down: waiting for in-flight pipelines")
        await get_orchestrator().shutdown()


app = FastAPI(title="Site Surgeon API", lifespan=lifespan)

_missing = missing_env()
if _missing:
    logger.warning("Missing environment variables (degraded mode): %s", ", ".join(_missing))
if DEMO_MODE:
    logger.info("DEMO_MODE enabled: sandbox and coding agent are skipped")

# ---------------------------------------------------------------------------
# Logging Middleware
# ---------------------------------------------------------------------------
class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        client_host = request.client.host if request.client else "unknown"
        logger.info("Incoming: %s %s from %s", request.method, request.url.path, client_host)

        try:
            response = await call_next(request)
            process_time = (time.time() - start_time) * 1000
            logger.info(
                "Outgoing: %s %s - Status: %d - Time: %.2fms",
                request.method, request.url.path, response.status_code, process_time,
            )
            return response
        except Exception as e:
            logger.error("Request failed: %s %s - Error: %s", request.method, request.url.path, e)
            raise

app.add_middleware(LoggingMiddleware)

# ---------------------------------------------------------------------------
# CORS: the dashboard dev server calls the API from another port
# ---------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Liveness only; says nothing about LLM, GitHub or SMTP reachability
@app.get("/health")
async def health_check():
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "demo": DEMO_MODE,
    }

# Register routers
app.include_router(issues_router)
app.include_router(dashboard_router)

if __name__ == "__main__":
    uvicorn.run("main:app", host="127.0.0.1", port=8000, reload=True)
