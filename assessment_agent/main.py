import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from assessment_agent.api import routes
from assessment_agent.utils.errors import (
    AssessmentAgentError,
    ErrorCode,
    build_error_payload,
    error_code_for_http_status,
)
from assessment_agent.utils.logging_setup import configure_logging
from assessment_agent.utils.observability import get_request_id_from_headers
from assessment_agent.utils.settings import get_settings

logger = logging.getLogger(__name__)


def _request_id(request: Request) -> str | None:
    return getattr(getattr(request, "state", None), "request_id", None) or get_request_id_from_headers(
        request.headers
    )


def create_app() -> FastAPI:
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):  # noqa: ARG001
        configure_logging(settings)
        yield

    app = FastAPI(title="Assessment Agent", version="1.0.0", lifespan=lifespan)

    @app.middleware("http")
    async def _request_id_middleware(request: Request, call_next):
        request_id = get_request_id_from_headers(request.headers) or f"req_{uuid.uuid4().hex[:12]}"
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id
        return response

    @app.get("/healthz")
    async def healthz():
        return {"ok": True}

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        detail = exc.detail
        code = error_code_for_http_status(int(exc.status_code))
        if isinstance(detail, dict):
            message = str(detail.get("error") or detail.get("message") or detail)
            try:
                code = ErrorCode(detail.get("code") or code)
            except ValueError:
                pass
        else:
            message = str(detail)
        payload = {"detail": detail}
        payload.update(build_error_payload(code=code, message=message, request_id=_request_id(request)))
        return JSONResponse(status_code=int(exc.status_code), content=payload)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        payload = {"detail": errors}
        payload.update(
            build_error_payload(
                code=ErrorCode.VALIDATION_ERROR,
                message="Validation error",
                details={"errors": errors},
                request_id=_request_id(request),
            )
        )
        return JSONResponse(status_code=422, content=payload)

    @app.exception_handler(AssessmentAgentError)
    async def _agent_exception_handler(request: Request, exc: AssessmentAgentError):
        logger.error("Assessment error: %s", exc)
        payload = build_error_payload(code=exc.code, message=str(exc), request_id=_request_id(request))
        return JSONResponse(status_code=500, content=payload)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception: %s", exc, exc_info=True)
        payload = build_error_payload(
            code=ErrorCode.SERVICE_ERROR,
            message="Internal server error",
            request_id=_request_id(request),
        )
        return JSONResponse(status_code=500, content=payload)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(routes.router, prefix="/api/v1")
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("assessment_agent.main:app", host="0.0.0.0", port=8000)
