#=================================================================
# dispatch_bridge/main_app.py
# FastAPI application entry-point; hosts the marketplace polling worker.
#=================================================================

import logging, secrets

from fastapi import FastAPI, Depends, Request, HTTPException, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import HTTPBasic, HTTPBasicCredentials

import dispatch_bridge.logging_filters  # noqa: F401  (installs the redaction filter)
from dispatch_bridge.admin.integration_api import router as marketplace_admin_router
from dispatch_bridge.workers.orchestrator import PollingTicker
from dispatch_bridge.workers.runtime import get_runtime
from dispatch_bridge.db import init_db, dispose_db
from dispatch_bridge.config import settings

# --- FastAPI instance ---
app = FastAPI(
    title="Marketplace Dispatch Bridge",
    description="Turns marketplace order events into delivery jobs and offers them to nearby workers.",
)

# --- Logging setup (console, INFO level) ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s | %(message)s"
)
logger = logging.getLogger("uvicorn.error")
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Simple HTTP Basic Auth for /admin/* protected endpoints ---
security = HTTPBasic()

def verify_admin(credentials: HTTPBasicCredentials = Depends(security)):
    ok_user = secrets.compare_digest(credentials.username or "", settings.ADMIN_USER or "")
    ok_pass = secrets.compare_digest(credentials.password or "", settings.ADMIN_PASS or "")
    if not (ok_user and ok_pass):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Basic"},
        )

# ---------------- Include routers ----------------

app.include_router(
    marketplace_admin_router,
    dependencies=[Depends(verify_admin)],
)

# --- Root endpoint ---
@app.get("/")
async def home():
    return {"status": "running", "service": "Marketplace Dispatch Bridge"}

# --- Global error handler (keeps full stack trace in logs) ---
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled error", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"detail": f"Request failed: {str(exc)}"},
    )

# ---- Background worker lifecycle ----
_ticker: PollingTicker | None = None

@app.on_event("startup")
async def _startup():
    await init_db()
    if not settings.WORKER_ENABLED:
        logger.info("[WORKER] disabled by WORKER_ENABLED")
        return
    global _ticker
    _ticker = PollingTicker(get_runtime().orchestrator)
    _ticker.start()

@app.on_event("shutdown")
async def _shutdown():
    global _ticker
    if _ticker:
        await _ticker.stop(timeout=5.0)
        _ticker = None
    await dispose_db()
