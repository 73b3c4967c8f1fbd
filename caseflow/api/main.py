# caseflow FastAPI Application
# REST API for deploying process definitions and running cases

import time
import uuid
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from caseflow import __version__
from caseflow.api.cases import get_case_service, peek_case_service, router as cases_router
from caseflow.api.definitions import router as definitions_router
from caseflow.api.execution import CaseNotFound, CaseService
from caseflow.api.execution.case_service import RUNNING
from caseflow.api.models import HealthResponse
from caseflow.api.security import require_api_key
from caseflow.api.storage import DefinitionRepository, get_storage
from caseflow.config import Settings
from caseflow.errors import (
    BusinessError,
    CaseflowError,
    CompilationError,
    CompiledProcessDecodeError,
    ConfigurationError,
    DefinitionNotFound,
    ExpressionError,
)

logger = logging.getLogger(__name__)

# CaseflowError subclass to HTTP status; first match wins
ERROR_STATUS = (
    (CompilationError, 400, "COMPILATION_ERROR"),
    (ConfigurationError, 400, "CONFIGURATION_ERROR"),
    (ExpressionError, 400, "EXPRESSION_ERROR"),
    (CompiledProcessDecodeError, 400, "DECODE_ERROR"),
    (DefinitionNotFound, 404, "DEFINITION_NOT_FOUND"),
    (CaseNotFound, 404, "CASE_NOT_FOUND"),
    (BusinessError, 422, "BUSINESS_ERROR"),
)


def _timestamp() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    logger.info("caseflow API starting up")
    yield
    service = peek_case_service()
    if service is not None:
        await service.shutdown()
    logger.info("caseflow API shutting down")


app = FastAPI(
    title="caseflow API",
    description="""
    ## caseflow

    Compiles BPMN 2.0 process definitions into an executable graph and runs
    them as long-lived cases.

    ### Features
    - **Definitions**: Deploy versioned BPMN definitions
    - **Cases**: Start cases, complete user tasks, deliver signals and messages
    - **State**: Query interpreter state and user task forms
    """,
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=[
        {"name": "Process Definitions", "description": "Deploy and inspect definitions"},
        {"name": "Cases", "description": "Run and signal process instances"},
        {"name": "System", "description": "Health and system information"},
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=Settings.from_env().allowed_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_request_metadata(request: Request, call_next):
    """Attach request tracing/performance headers."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    start = time.perf_counter()

    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - start) * 1000

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time-Ms"] = f"{elapsed_ms:.2f}"
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    return response


api_guard = [Depends(require_api_key)]
app.include_router(definitions_router, prefix="/api/v1", dependencies=api_guard)
app.include_router(cases_router, prefix="/api/v1", dependencies=api_guard)


# ==================== Health Endpoint ====================


@app.get("/health", response_model=HealthResponse, tags=["System"])
@app.get("/api/v1/health", response_model=HealthResponse, tags=["System"])
async def health_check(
    storage: DefinitionRepository = Depends(get_storage),
    cases: CaseService = Depends(get_case_service),
):
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        version=__version__,
        definition_count=len(storage.list_definitions()),
        running_cases=sum(1 for r in cases.list_cases() if r.status == RUNNING),
    )


# ==================== Error Handlers ====================


@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc):
    """Custom HTTP exception handler"""
    return JSONResponse(
        status_code=exc.status_code,
        headers=exc.headers,
        content={
            "error": exc.detail,
            "code": f"HTTP_{exc.status_code}",
            "timestamp": _timestamp(),
        },
    )


@app.exception_handler(CaseflowError)
async def caseflow_exception_handler(request, exc):
    """Map engine errors to client-facing status codes"""
    for error_type, status_code, code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return JSONResponse(
                status_code=status_code,
                content={"error": str(exc), "code": code, "timestamp": _timestamp()},
            )
    logger.error(f"Unmapped engine error: {exc}")
    return JSONResponse(
        status_code=500,
        content={"error": str(exc), "code": "ENGINE_ERROR", "timestamp": _timestamp()},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request, exc):
    """General exception handler"""
    logger.exception(f"Unhandled error on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal Server Error",
            "code": "INTERNAL_ERROR",
            "timestamp": _timestamp(),
        },
    )
