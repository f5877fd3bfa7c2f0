from contextlib import asynccontextmanager
import traceback

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings
from api import router
from services.price_feed import sol_price_feed
from services.wallet_flow import wallet_flow_pipeline
from utils.logger import setup_logging, get_logger

# Setup logging
setup_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON)
logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    logger.info(
        "Starting Solana wallet flow service...",
        rpc_url=settings.SOLANA_RPC_URL,
        fallbacks=len(settings.RPC_FALLBACK_URLS),
        max_wallets_per_batch=settings.MAX_WALLETS_PER_BATCH,
    )
    try:
        yield
    finally:
        logger.info("Shutting down...")
        await wallet_flow_pipeline.aclose()
        await sol_price_feed.close()
        logger.info("Shutdown complete")


app = FastAPI(
    title="Solana Wallet Flow",
    description="Batch native SOL inflow/outflow analysis for Solana wallets",
    version="1.0.0",
    lifespan=lifespan,
)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled exception",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        traceback=traceback.format_exc(),
    )
    return JSONResponse(
        status_code=500, content={"detail": "Internal server error", "error": str(exc)}
    )


# Malformed request bodies
@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    detail = f"Invalid request: {location}: {message}" if location else f"Invalid request: {message}"
    logger.info("Rejected request body", path=request.url.path, error=detail)
    return JSONResponse(
        status_code=400, content={"detail": detail, "errors": jsonable_encoder(errors)}
    )


# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# API routes
app.include_router(router, prefix="/api")


# Health checks
@app.get("/health")
async def health_check():
    """Basic health check - for load balancers"""
    return {"status": "ok"}


if __name__ == "__main__":
    import os
    import uvicorn

    port = int(os.environ.get("PORT", 8000))
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=port,
        timeout_keep_alive=30,
    )
