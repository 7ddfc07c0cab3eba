import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from studyhub.core.errors import RateLimited, RegistryError, Unauthenticated

logger = logging.getLogger("studyhub")


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RegistryError)
    async def registry_error_handler(request: Request, exc: RegistryError):
        headers = {}
        if isinstance(exc, Unauthenticated):
            headers["WWW-Authenticate"] = "Bearer"
        elif isinstance(exc, RateLimited):
            headers["Retry-After"] = str(exc.retry_after)
        return JSONResponse({"detail": exc.detail}, status_code=exc.status_code, headers=headers)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("event=unhandled_error method=%s path=%s", request.method, request.url.path)
        return JSONResponse({"detail": "Internal server error"}, status_code=500)
