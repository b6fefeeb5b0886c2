"""az-relocate – FastAPI web application.

REST endpoints to validate and run a zonal relocation of an Azure VM.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from az_relocate import __version__
from az_relocate.errors import (
    ConflictError,
    IncompatibilityError,
    ProvisioningError,
    RelocateError,
    ValidationError,
)
from az_relocate.models.migration import MigrationRequest
from az_relocate.services import validator
from az_relocate.services.orchestrator import MigrationOrchestrator
from az_relocate.settings import get_settings

app = FastAPI(
    title="az-relocate API",
    version=__version__,
    description=(
        "REST API for moving an Azure virtual machine into an availability zone. "
        "Validate a move first, preview it with `whatIf`, then run it."
    ),
    license_info={"name": "MIT", "url": "https://opensource.org/licenses/MIT"},
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Colored logging (reuse uvicorn's formatter)
# ---------------------------------------------------------------------------


def _setup_logging(level: int = logging.WARNING) -> None:
    """Configure the root ``az_relocate`` logger with uvicorn-style colours."""
    from uvicorn.logging import DefaultFormatter

    handler = logging.StreamHandler()
    handler.setFormatter(
        DefaultFormatter(fmt="%(levelprefix)s %(name)s - %(message)s", use_colors=True)
    )
    app_logger = logging.getLogger("az_relocate")
    app_logger.handlers = [handler]
    app_logger.setLevel(level)
    app_logger.propagate = False

    # Silence noisy third-party loggers
    logging.getLogger("azure").setLevel(logging.WARNING)


_setup_logging()
logger = logging.getLogger(__name__)


def _error_response(exc: RelocateError, status_code: int) -> JSONResponse:
    payload: dict = {"error": str(exc), "type": type(exc).__name__}
    if isinstance(exc, ValidationError):
        payload["report"] = exc.report.model_dump()
    if exc.result is not None:
        payload["result"] = exc.result.model_dump()
    return JSONResponse(payload, status_code=status_code)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@app.get("/api/health", tags=["Meta"], summary="Liveness probe")
async def health() -> JSONResponse:
    return JSONResponse({"status": "ok", "version": __version__})


@app.post("/api/validate", tags=["Relocation"], summary="Validate a zone move")
def validate_move(body: MigrationRequest) -> JSONResponse:
    """Run every pre-flight rule and return the full report.

    A report with violations is still a ``200``; ``ok`` tells whether the
    move may proceed.
    """
    try:
        report, _plan = validator.validate(body, get_settings())
    except IncompatibilityError as exc:
        return _error_response(exc, 422)
    except Exception as exc:
        logger.exception("Failed to validate move of %s", body.vmName)
        return JSONResponse({"error": str(exc)}, status_code=500)
    return JSONResponse({**report.model_dump(), "ok": report.ok})


@app.post("/api/move", tags=["Relocation"], summary="Move a VM into a zone")
def move(body: MigrationRequest) -> JSONResponse:
    """Run the relocation (or only plan it when ``whatIf`` is true).

    Pre-flight failures return ``422``; provisioning failures return ``502``
    with the partial result so the caller can see what was created.
    """
    try:
        result = MigrationOrchestrator(get_settings()).run(body)
    except (ValidationError, IncompatibilityError, ConflictError) as exc:
        return _error_response(exc, 422)
    except ProvisioningError as exc:
        return _error_response(exc, 502)
    except Exception as exc:
        logger.exception("Failed to move %s", body.vmName)
        return JSONResponse({"error": str(exc)}, status_code=500)
    return JSONResponse({**result.model_dump(), "succeeded": result.succeeded})
