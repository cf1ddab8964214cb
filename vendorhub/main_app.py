#=================================================================
# vendorhub/main_app.py
# FastAPI application entry-point.
#=================================================================

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from vendorhub import logging_filters
from vendorhub.api.admin_jobs import router as admin_jobs_router
from vendorhub.api.internal_jobs import router as internal_jobs_router
from vendorhub.api.security import verify_admin
from vendorhub.config import Settings, settings as default_settings
from vendorhub.db import init_db
from vendorhub.services import build_services
from vendorhub.webhooks.shopify import router as shopify_webhooks_router

# --- Logging setup (console, INFO level) ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s | %(message)s"
)
logger = logging.getLogger("uvicorn.error")
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging_filters.install()


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or default_settings
    services = build_services(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # fail closed on bad config before serving anything
        settings.validate()
        await init_db(services.engine)
        logger.info("[DB] ready (%s)", services.engine.url.render_as_string(hide_password=True))
        try:
            yield
        finally:
            await services.engine.dispose()

    app = FastAPI(
        title="VendorHub Shopify Job Pipeline",
        description="Shopify webhook intake and vendor shipment import jobs.",
        lifespan=lifespan,
    )
    app.state.services = services

    # --- CORS ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---------------- Include routers ----------------

    # Webhooks (HMAC-verified, no other auth)
    app.include_router(shopify_webhooks_router)  # /webhooks/shopify

    # Job triggers (bearer secret)
    app.include_router(internal_jobs_router)     # /api/internal/*

    # Admin (HTTP Basic)
    app.include_router(
        admin_jobs_router,
        prefix="/admin",
        dependencies=[Depends(verify_admin)],
    )

    # --- Root endpoint ---
    @app.get("/")
    async def home():
        return {"status": "running", "service": "VendorHub"}

    # --- Global error handler (keeps full stack trace in logs) ---
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled error on %s", request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content={"error": "internal_error"})

    return app


app = create_app()

#if __name__ == "__main__":
#    import uvicorn
#
#    uvicorn.run(app, host="0.0.0.0", port=8000)
