import json
import logging
import uuid
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from fastapi.responses import ORJSONResponse, PlainTextResponse

from licensor.app.codec.verdict_codec import VerdictCodec
from licensor.app.core.config import Settings
from licensor.app.core.errors import ConfigurationError, MalformedInputError
from licensor.app.registry.client import GistRegistryClient
from licensor.app.services.dispatcher import LicenseDispatcher, Operation

logger = logging.getLogger("licensor.api")

router = APIRouter(tags=["License Validation"])

# =============================================================================
# Dependency providers
# =============================================================================

def get_correlation_id(
    x_correlation_id: Annotated[
        Optional[str],
        Header(description="Audit trace ID"),
    ] = None,
) -> str:
    """Extract or generate a correlation ID for end-to-end traceability."""
    if x_correlation_id and len(x_correlation_id) > 128:
        return str(uuid.uuid4())
    return x_correlation_id or str(uuid.uuid4())


def get_dispatcher(request: Request) -> LicenseDispatcher:
    """
    Build a dispatcher from state prepared at startup.

    The signing scheme and HTTP transport are shared; the dispatcher
    itself is stateless and cheap to construct per request.
    """
    config_error = getattr(request.app.state, "config_error", None)
    if config_error is not None:
        # Fresh instance per request; the stored error must not accumulate
        # request frames in its traceback.
        raise ConfigurationError(str(config_error))

    settings: Optional[Settings] = getattr(request.app.state, "settings", None)
    scheme = getattr(request.app.state, "scheme", None)
    if settings is None or scheme is None:
        raise ConfigurationError("licensor state not initialized")

    return LicenseDispatcher(
        registry=GistRegistryClient(
            settings=settings,
            http_client=request.app.state.http_client,
        ),
        codec=VerdictCodec(scheme),
    )


def _body_too_large(limit: int) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
        detail=f"Request body exceeds the {limit} byte limit.",
    )


async def read_json_body(request: Request) -> Any:
    """
    Read and decode the request body, never buffering more than
    max_body_bytes + one chunk.

    Parsing happens here rather than through a pydantic body parameter
    so that shape errors surface as MalformedInputError.
    """
    settings: Optional[Settings] = getattr(request.app.state, "settings", None)
    limit = settings.max_body_bytes if settings is not None else 1_000_000

    declared = request.headers.get("content-length")
    if declared is not None and declared.isdigit() and int(declared) > limit:
        raise _body_too_large(limit)

    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > limit:
            raise _body_too_large(limit)

    try:
        return json.loads(body)
    except (ValueError, UnicodeDecodeError):
        raise MalformedInputError("request body is not valid JSON") from None


Dispatcher = Annotated[LicenseDispatcher, Depends(get_dispatcher)]
CorrelationId = Annotated[str, Depends(get_correlation_id)]


# =============================================================================
# Issue
# =============================================================================

@router.get(
    "/validate-key",
    summary="Issue a signed verdict for a key (query-string form)",
    responses={
        400: {"description": "Missing key parameter"},
        500: {"description": "Server misconfigured or signing failed"},
    },
)
async def issue_from_query(
    dispatcher: Dispatcher,
    correlation_id: CorrelationId,
    key: Annotated[Optional[str], Query()] = None,
) -> ORJSONResponse:
    if not key:
        raise MalformedInputError("Missing key parameter")

    verdict = await dispatcher.issue(key)

    return ORJSONResponse(
        content=verdict.model_dump(),
        headers={"X-Correlation-ID": correlation_id},
    )


@router.post(
    "/issue",
    summary="Issue a signed verdict for a key",
    responses={
        400: {"description": "Malformed request"},
        500: {"description": "Server misconfigured or signing failed"},
    },
)
async def issue(
    request: Request,
    dispatcher: Dispatcher,
    correlation_id: CorrelationId,
) -> ORJSONResponse:
    body = await read_json_body(request)
    verdict = await dispatcher.dispatch(Operation.ISSUE, body)

    return ORJSONResponse(
        content=verdict.model_dump(),
        headers={"X-Correlation-ID": correlation_id},
    )


# =============================================================================
# Verify
# =============================================================================

@router.post(
    "/validate-key",
    summary="Verify a previously issued verdict",
    response_class=PlainTextResponse,
    responses={
        200: {
            "content": {"text/plain": {}},
            "description": "'valid' or 'invalid'",
        },
        400: {"description": "Malformed request"},
        413: {"description": "Payload too large"},
        500: {"description": "Server misconfigured"},
    },
)
async def verify(
    request: Request,
    dispatcher: Dispatcher,
    correlation_id: CorrelationId,
) -> PlainTextResponse:
    body = await read_json_body(request)
    ok = await dispatcher.dispatch(Operation.VERIFY, body)

    logger.info(
        "verify_completed",
        extra={"trace_id": correlation_id, "valid": ok},
    )

    return PlainTextResponse(
        content="valid" if ok else "invalid",
        headers={"X-Correlation-ID": correlation_id},
    )
