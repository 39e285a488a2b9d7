import sys
import logging
import httpx

from contextlib import asynccontextmanager
from importlib.metadata import version, PackageNotFoundError

from fastapi import FastAPI, Request, status
from fastapi.responses import ORJSONResponse

from licensor.app.api.routes import router as license_router
from licensor.app.codec.schemes import build_signing_scheme
from licensor.app.core.config import Settings, load_settings
from licensor.app.core.errors import (
    ConfigurationError,
    MalformedInputError,
    SigningFailure,
)
from licensor.app.core.logging_config import configure_logging

logger = logging.getLogger("licensor.main")


def get_app_version() -> str:
    """
    Resolve application version deterministically.

    Falls back to the source version when the package is not installed.
    """
    try:
        return version("licensor")
    except PackageNotFoundError:
        return "0.3.0"


def build_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(
            timeout=10.0,
            connect=5.0,
        ),
        limits=httpx.Limits(
            max_keepalive_connections=10,
            max_connections=50,
        ),
        headers={
            "User-Agent": f"licensor/{get_app_version()}",
        },
    )


def configure_state(
    app: FastAPI,
    *,
    settings: Settings,
    http_client: httpx.AsyncClient,
) -> None:
    """
    Attach immutable configuration and shared collaborators to the app.

    The signing scheme is selected here, once. Malformed key material
    surfaces as a ConfigurationError.
    """
    app.state.settings = settings
    app.state.http_client = http_client
    app.state.scheme = build_signing_scheme(settings)
    app.state.config_error = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    A misconfigured service still starts, but every license operation
    answers with an explicit configuration error. It never answers with
    a verdict.
    """
    app.state.http_client = build_http_client()
    app.state.config_error = None

    try:
        settings = load_settings()
        configure_logging(settings.log_level)
        configure_state(
            app,
            settings=settings,
            http_client=app.state.http_client,
        )
    except ConfigurationError as exc:
        configure_logging()
        logger.error(
            "invalid_licensor_configuration",
            extra={"reason": str(exc)},
        )
        app.state.config_error = exc

    logger.info(
        "licensor_startup_complete",
        extra={
            "version": get_app_version(),
            "configured": app.state.config_error is None,
        },
    )

    try:
        yield
    finally:
        logger.info("licensor_shutdown_begin")

        try:
            await app.state.http_client.aclose()
        except Exception:
            logger.warning("http_client_shutdown_failed")


# =============================================================================
# Error mapping
# =============================================================================

async def _configuration_error_handler(
    request: Request, exc: ConfigurationError
) -> ORJSONResponse:
    logger.error(
        "configuration_error",
        extra={"path": request.url.path, "reason": str(exc)},
    )
    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Server misconfigured"},
    )


async def _signing_failure_handler(
    request: Request, exc: SigningFailure
) -> ORJSONResponse:
    logger.error(
        "signing_failure",
        extra={"path": request.url.path, "reason": str(exc)},
    )
    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Signing failed"},
    )


async def _malformed_input_handler(
    request: Request, exc: MalformedInputError
) -> ORJSONResponse:
    logger.info(
        "malformed_request",
        extra={"path": request.url.path, "reason": str(exc)},
    )
    return ORJSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": str(exc)},
    )


def create_app() -> FastAPI:
    """
    Application factory for the license validation service.
    """
    app = FastAPI(
        title="Licensor",
        description=(
            "Issues and verifies signed license verdicts backed by a "
            "remotely stored key registry."
        ),
        version=get_app_version(),
        docs_url="/docs",
        redoc_url=None,
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    app.add_exception_handler(ConfigurationError, _configuration_error_handler)
    app.add_exception_handler(SigningFailure, _signing_failure_handler)
    app.add_exception_handler(MalformedInputError, _malformed_input_handler)

    app.include_router(license_router)

    @app.get(
        "/healthz",
        tags=["Monitoring"],
        summary="Liveness and readiness probe",
    )
    async def health_check(request: Request):
        """
        Verifies that the runtime is alive.

        NOTE:
        - Does NOT perform cryptographic operations
        - Does NOT call the registry
        """
        return ORJSONResponse(
            content={
                "status": "ok",
                "service": "licensor",
                "version": app.version,
                "runtime": f"python {sys.version.split()[0]}",
                "configured": getattr(request.app.state, "config_error", None)
                is None,
            }
        )

    return app


app = create_app()
