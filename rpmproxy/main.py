import asyncio
import contextlib
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse

from rpmproxy.api.repo import router as repo_router
from rpmproxy.core.config import Settings, load_settings
from rpmproxy.core.dependencies import AppContext, build_context
from rpmproxy.domain.errors import (
    ChecksumIncomplete,
    FetchFailed,
    NotFound,
    ParseFailed,
    ProviderFetchFailed,
    RpmProxyError,
    StorageUnavailable,
)
from rpmproxy.services.discovery import periodic_discovery_loop

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    NotFound: 404,
    StorageUnavailable: 503,
    ProviderFetchFailed: 502,
    FetchFailed: 502,
    ParseFailed: 502,
    ChecksumIncomplete: 502,
}


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def error_status(error: RpmProxyError) -> int:
    for error_type, status_code in ERROR_STATUS.items():
        if isinstance(error, error_type):
            return status_code
    return 500


def create_app(settings: Optional[Settings] = None, context: Optional[AppContext] = None) -> FastAPI:
    """
    Build the FastAPI application.

    The provider registry and storage are created here from `settings` (or
    taken from an explicit `context`) and attached to `app.state`.
    """
    if context is None:
        context = build_context(settings or load_settings())

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        # Periodic discovery replaces an external cron trigger; interval 0 disables it.
        task = None
        if context.settings.check_interval_seconds > 0:
            task = asyncio.create_task(periodic_discovery_loop(context))
        try:
            yield
        finally:
            if task is not None:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    app = FastAPI(
        title="RPM Repository Proxy",
        version="0.1.0",
        description="Republishes upstream RPM releases as a dnf/yum repository.",
        lifespan=lifespan,
    )
    app.state.context = context

    @app.exception_handler(RpmProxyError)
    async def rpmproxy_error_handler(request: Request, exc: RpmProxyError) -> PlainTextResponse:
        status_code = error_status(exc)
        if status_code >= 500:
            logger.error(f"Error handling {request.url.path}: {exc}")
        return PlainTextResponse(str(exc), status_code=status_code)

    app.include_router(repo_router)
    return app


def main() -> None:
    """
    Console entry point: load settings and start the Uvicorn server.
    """
    import uvicorn

    settings = load_settings()
    configure_logging(settings.log_level)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
