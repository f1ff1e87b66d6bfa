import time
import traceback
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from granian import Granian
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware

from smc_live.api.errors import app_error_handler
from smc_live.app_config import get_app_environ_config
from smc_live.schemas.init_schemas import init_schema
from smc_live.shared.api.utils import api_failure, init_logger, load_routes, validation_exception_handler
from smc_live.utils.app_errors import AppError, AppErrorCode

settings = get_app_environ_config()


class HTTPLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore
        start_time = time.time()
        request_id = str(uuid.uuid4())[:8]

        logger.info(f"[{request_id}] {request.method} {request.url.path}")

        try:
            response = await call_next(request)

            process_time = (time.time() - start_time) * 1000
            logger.info(
                f"[{request_id}] {request.method} {request.url.path} - "
                f"Status: {response.status_code} - "
                f"Duration: {process_time:.2f}ms"
            )

            return response

        except Exception as exc:
            process_time = (time.time() - start_time) * 1000

            logger.error(
                f"[{request_id}] Unhandled exception in {request.method} {request.url.path} - "
                f"Duration: {process_time:.2f}ms - "
                f"Error: {type(exc).__name__}: {exc}\n"
                f"Traceback:\n{traceback.format_exc()}"
            )

            failure = api_failure(
                errcode=AppErrorCode.E_INTERNAL_ERROR,
                errmesg=f"Internal server error (request_id: {request_id})",
            )
            return ORJSONResponse(
                status_code=500,
                content=failure.model_dump(),
            )


@asynccontextmanager
async def lifespan(server: FastAPI):
    init_logger()

    logger.info("Application startup...")

    # Initialize MongoDB schemas and Beanie ODM
    await init_schema()

    yield

    logger.info("Application shutdown...")


def create_app(lifespan_handler=lifespan) -> FastAPI:
    app = FastAPI(
        version="1.0",
        title="SMC Live API",
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url=None,
        openapi_url="/openapi.json" if settings.DEBUG else None,
        default_response_class=ORJSONResponse,
        lifespan=lifespan_handler,
    )

    app.add_middleware(HTTPLoggingMiddleware)

    app.add_middleware(
        CORSMiddleware,  # type: ignore
        allow_origins=settings.API_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore
    app.add_exception_handler(AppError, app_error_handler)  # type: ignore

    load_routes(app, "/api/v1")

    return app


app = create_app()


def build_granian_kwargs():
    kwargs = {
        "interface": "asgi",
        "address": settings.API_HOST,
        "port": settings.API_PORT,
        "workers": settings.API_WORKERS,
        "reload": settings.DEBUG,
    }

    return kwargs


if __name__ == "__main__":
    granian_kwargs = build_granian_kwargs()
    Granian("smc_live.main:app", **granian_kwargs).serve()
