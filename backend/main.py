"""FastAPI application entry point for the chat relay.

Startup sequence: load .env -> create the upstream LLM adapter -> read relay flags.
"""

import os
from contextlib import asynccontextmanager

import structlog
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

from backend.api.routes import RelayRequestError, router
from backend.core.llm_adapter import LLMAdapter, LLMError
from backend.core.multimodal import ImageProcessingError

load_dotenv()

logger = structlog.get_logger(__name__)


def _env_flag(name: str, default: str = "true") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("startup.begin")

    llm_adapter = LLMAdapter()
    app.state.llm_adapter = llm_adapter
    logger.info("startup.llm_initialized", model=llm_adapter.model_name,
                healthy=llm_adapter.is_healthy())
    if not llm_adapter.is_healthy():
        logger.warning("startup.no_api_key", hint="Set OPENROUTER_API_KEY in .env")

    app.state.multimodal = _env_flag("RELAY_MULTIMODAL")
    logger.info("startup.complete", multimodal=app.state.multimodal)
    yield
    await llm_adapter.aclose()
    logger.info("shutdown.complete")


app = FastAPI(
    title="RelayChat Relay",
    description="Relay between the chat client and a hosted language model",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS for the browser client
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RelayRequestError)
async def relay_request_error_handler(request: Request, exc: RelayRequestError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(ImageProcessingError)
async def image_error_handler(request: Request, exc: ImageProcessingError):
    logger.error("chat.image_failed", error=str(exc))
    return JSONResponse(status_code=500, content={"error": "Failed to process uploaded image"})


@app.exception_handler(LLMError)
async def llm_error_handler(request: Request, exc: LLMError):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("chat.unhandled", error=str(exc), error_type=type(exc).__name__)
    return JSONResponse(status_code=500, content={"error": str(exc) or "Internal server error occurred"})


app.include_router(router)
