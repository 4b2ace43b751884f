from fastapi import FastAPI, Request, status
from fastapi.responses import ORJSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from captcha_vision.api.v1.routes import router as v1_router
from captcha_vision.core.config import Settings
from captcha_vision.core.errors import BadRequest, DecodeError, DependencyError, InputError, PredictionError
from captcha_vision.core.lifespan import build_lifespan
from captcha_vision.core.logging import configure_logging


def _prediction_status(exc: PredictionError) -> int:
    # ShapeMismatch is both an InputError and a DecodeError; a bad model output
    # is reported as such when it happens while decoding
    if isinstance(exc.cause, DecodeError) and exc.stage == "decode":
        return status.HTTP_502_BAD_GATEWAY
    if isinstance(exc.cause, InputError):
        return status.HTTP_400_BAD_REQUEST
    return status.HTTP_503_SERVICE_UNAVAILABLE


def create_app() -> FastAPI:
    settings = Settings()
    configure_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        default_response_class=ORJSONResponse,
        lifespan=build_lifespan(settings),
    )

    @app.exception_handler(BadRequest)
    async def bad_request_handler(request: Request, exc: BadRequest):
        return ORJSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": str(exc)},
        )

    @app.exception_handler(DependencyError)
    async def dependency_error_handler(request: Request, exc: DependencyError):
        return ORJSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": str(exc)},
        )

    @app.exception_handler(PredictionError)
    async def prediction_error_handler(request: Request, exc: PredictionError):
        return ORJSONResponse(
            status_code=_prediction_status(exc),
            content={"detail": str(exc), "stage": exc.stage},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return ORJSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        # Format validation errors into a readable message
        errors = exc.errors()
        if errors:
            first_error = errors[0]
            field = ".".join(str(loc) for loc in first_error.get("loc", []))
            error_msg = first_error.get("msg", "Validation error")
            detail = f"Validation error for field '{field}': {error_msg}"
            if len(errors) > 1:
                detail += f" (and {len(errors) - 1} more error(s))"
        else:
            detail = "Validation error"

        return ORJSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": detail},
        )

    app.include_router(v1_router, prefix="/api/v1")
    return app


app = create_app()
