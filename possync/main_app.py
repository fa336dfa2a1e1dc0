#=================================================================
# possync/main_app.py
# FastAPI application shell around the sync engine and print queue.
#=================================================================

import logging, secrets
from typing import Callable, Optional

from fastapi import FastAPI, Depends, Request, HTTPException, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from possync.config import Settings, settings as default_settings
from possync.errors import PersistenceError
from possync.routes import router as api_router, admin_router
from possync.runtime import Runtime, build_runtime
import possync.logging_filters  # noqa: F401  (installs the log sanitizer)

# --- Logging setup (console, INFO level) ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s | %(message)s"
)
logger = logging.getLogger("uvicorn.error")
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

security = HTTPBasic()


def create_app(
    settings: Optional[Settings] = None,
    runtime_factory: Optional[Callable[[Settings], Runtime]] = None,
) -> FastAPI:
    cfg = settings or default_settings
    factory = runtime_factory or build_runtime

    app = FastAPI(
        title="POS Offline Sync",
        description="Offline-first sync engine and print dispatch queue for a POS terminal.",
    )

    # --- CORS ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Simple HTTP Basic Auth for operator endpoints ---
    def verify_admin(credentials: HTTPBasicCredentials = Depends(security)):
        ok_user = secrets.compare_digest(credentials.username or "", cfg.ADMIN_USER or "")
        ok_pass = secrets.compare_digest(credentials.password or "", cfg.ADMIN_PASS or "")
        if not (ok_user and ok_pass):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid credentials",
                headers={"WWW-Authenticate": "Basic"},
            )

    app.include_router(api_router)                                               # /api/*
    app.include_router(admin_router, dependencies=[Depends(verify_admin)])      # /api/print/* (operator)

    @app.get("/")
    async def home():
        return {"status": "running", "service": "POS Offline Sync"}

    # Store failures are never masked: the caller gets a 503 and the action is not acknowledged
    @app.exception_handler(PersistenceError)
    async def persistence_exception_handler(request: Request, exc: PersistenceError):
        logger.error("Store unavailable", exc_info=exc)
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled error", exc_info=exc)
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    # ---- Background lifecycle ----
    @app.on_event("startup")
    async def _startup():
        runtime = factory(cfg)
        app.state.runtime = runtime
        await runtime.start()

    @app.on_event("shutdown")
    async def _shutdown():
        runtime = getattr(app.state, "runtime", None)
        if runtime is not None:
            await runtime.stop()

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
