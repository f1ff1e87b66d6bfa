from functools import lru_cache
from importlib import import_module
from os import environ
from pathlib import Path
from typing import Any, Literal
from uuid import uuid4

from fastapi import FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
from loguru import logger
from pydantic import BaseModel, Field

from smc_live.utils.app_errors import AppError, AppErrorCode, HttpStatusCode

E_INTERNAL = AppErrorCode.E_INTERNAL_ERROR.value
E_INVALID_PARAMS = AppErrorCode.E_INVALID_PARAMS.value


def format_error(ex: BaseException) -> str:
    from traceback import TracebackException

    return "".join(TracebackException.from_exception(ex).format())


class ApiResponse(BaseModel):
    version: str | None = Field(default_factory=lambda: environ.get("BUILD_COMMIT", "dev"))


class ApiSuccess(ApiResponse):
    success: Literal[True] = True
    results: Any = "OK"


class ApiFailure(ApiResponse):
    success: Literal[False] = False
    errcode: str = E_INTERNAL
    erresid: str = Field(default_factory=lambda: uuid4().hex[:10])
    errmesg: str = "We are sorry, an error occurred."


def api_failure(errcode: str | None = None, errmesg: Exception | str | None = None, *, trace: Any = None):
    import inspect

    if not errcode:
        errcode = ApiFailure.model_fields["errcode"].default

    if isinstance(errmesg, Exception):
        errmesg = format_error(errmesg)

    if not errmesg:
        errmesg = ApiFailure.model_fields["errmesg"].default

    failure = ApiFailure(errcode=str(errcode), errmesg=errmesg)

    caller_frame = inspect.stack()[1]
    module = inspect.getmodule(caller_frame.frame)
    module_name = module.__name__ if module and getattr(module, "__name__", None) else caller_frame.filename
    caller_info = f"{module_name}:{caller_frame.function}:{caller_frame.lineno}"

    logger.warning(
        f"{failure.errcode} {failure.erresid}\n{failure.errmesg} caller={caller_info} trace={trace}"
    )

    return failure


def check_error(results: ApiFailure | dict) -> tuple[bool, bool]:
    if isinstance(results, ApiFailure):
        return True, results.errcode == E_INTERNAL

    if isinstance(results, dict) and "errcode" in results:
        return True, results["errcode"] == E_INTERNAL

    return False, False


def make_response(results, *, status_code: int | None = None):
    if isinstance(results, Exception):
        response = api_failure(errmesg=format_error(results))
        if status_code is None:
            status_code = 500
    else:
        response = results
        is_error, is_internal = check_error(results)
        if status_code is None:
            if is_error:
                status_code = 500 if is_internal else 400
            else:
                status_code = 200

    return ORJSONResponse(
        status_code=status_code,
        content=response.model_dump() if hasattr(response, "model_dump") else response,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()

    logger.warning(
        "Validation error: path={} method={} errors={}",
        request.url.path,
        request.method,
        errors,
    )

    failure = api_failure(E_INVALID_PARAMS, errmesg=str(errors))
    return make_response(failure, status_code=HttpStatusCode.UNPROCESSABLE_ENTITY)


def load_routes(app: FastAPI, prefix: str):
    """Include every `router` found under the `smc_live.api` package."""
    from ..config import config

    disabled_routes = [x.strip() for x in config.get("API_DISABLED", "").split(",") if x.strip()]
    logger.debug("disabled routes: {}", disabled_routes)

    api_folder = Path(__file__).parent.parent.parent / "api"
    for x in sorted(api_folder.rglob("*.py")):
        if x.name == "__init__.py":
            continue

        relative_path = x.relative_to(api_folder.parent.parent)
        name = ".".join(relative_path.with_suffix("").parts)
        if any(f".{disabled_route}" in name for disabled_route in disabled_routes):
            logger.warning("disabled route module {}", name)
            continue

        module = import_module(name)
        if hasattr(module, "router"):
            app.include_router(module.router, prefix=prefix)
            logger.info("Added routes in {}", name)

    for route_info in get_all_routes_info(app):
        methods = ",".join(route_info["methods"])
        logger.info("Loaded route: {:<12} {:<60} {}", methods, route_info["path"], route_info["endpoint"])


def get_all_routes_info(app: FastAPI):
    routes_info = []

    for route in app.routes:
        if hasattr(route, "methods"):
            endpoint_name = route.endpoint.__name__ if hasattr(route.endpoint, "__name__") else str(route.endpoint)
            routes_info.append(
                {
                    "methods": sorted(route.methods),
                    "path": route.path,
                    "name": route.name,
                    "endpoint": endpoint_name,
                }
            )

    return routes_info


async def verify_api_key(x_api_key: str | None = Header(None)):
    from smc_live.app_config import get_app_environ_config

    expected = get_app_environ_config().ADMIN_API_TOKEN
    if expected and x_api_key != expected:
        logger.warning("Invalid API key attempt")
        raise AppError(
            errcode=AppErrorCode.E_UNAUTHORIZED,
            errmesg="Invalid API key",
            status_code=HttpStatusCode.UNAUTHORIZED,
        )


@lru_cache
def get_worker_info():
    project_root = Path(__file__).parent.parent.parent.parent
    worker_name = environ.get("WORKER_NAME", project_root.name)

    parts = environ.get("BUILD_COMMIT", "").split("-")
    commit_id = parts[1] if len(parts) > 1 else "dev"

    return worker_name, commit_id, uuid4().hex[:8]


def init_logger():
    import sys

    from ..config import config

    logger.remove()

    worker_name, commit_id, _ = get_worker_info()

    if config.get_flag("DEBUG"):
        logger_level = "DEBUG"
        logger_format = (
            f"<yellow>{worker_name}:{commit_id}</yellow> | "
            "<green>{time:MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>"
        )
    else:
        logger_level = "INFO"
        logger_format = (
            f"{worker_name}:{commit_id} | "
            "{time:MM-DD HH:mm:ss.SSS} | "
            "{level: <8} | "
            "{name}:{function}:{line} | "
            "{message}"
        )
    logger.add(sys.stderr, level=logger_level, format=logger_format)
