"""
main.py

This is the main entry point of the FastAPI application.
Here we create the FastAPI app, register all API routes
and turn pipeline errors into JSON responses.

This file does NOT contain business logic.
It only wires everything together.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

# Import API routers
from rx_intake.api.extract import router as extract_router
from rx_intake.api.health import router as health_router
from rx_intake.api.ocr import router as ocr_router
from rx_intake.api.prescriptions import router as prescriptions_router
from rx_intake.config import settings
from rx_intake.errors import PipelineError

logger = logging.getLogger(__name__)


async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    """Render any PipelineError as {"error", "details"} with its status."""

    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed ({exc.stage or 'n/a'}): {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.message}")

    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Invalid request", "details": details},
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    # Full traceback goes to the log only
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Failed to process prescription"},
    )


def create_app() -> FastAPI:
    """
    Creates and returns the FastAPI application instance.
    This function helps keep the app creation clean and testable.
    """
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    app = FastAPI(
        title="Rx Intake Service",
        description="Prescription intake: OCR + AI field extraction for pharmacy workflows",
        version="1.0.0"
    )

    # Register API routes
    app.include_router(health_router, prefix="/health", tags=["Health"])
    app.include_router(prescriptions_router, prefix="/prescriptions", tags=["Prescriptions"])
    app.include_router(ocr_router, prefix="/ocr", tags=["OCR"])
    app.include_router(extract_router, prefix="/extract", tags=["Extract"])

    app.add_exception_handler(PipelineError, pipeline_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    return app


# Create app instance
app = create_app()
