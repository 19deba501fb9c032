"""
Gestionnaires d'exceptions.
- CheckoutError: charge utile client {error, title, message, suggestion, canRetry, details?}
- HTTPException: JSON {"detail": ...}; un 429 porte en plus la charge utile RATE_LIMIT
"""
import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from storefront.checkout.errors import CheckoutError, ErrorCode, ErrorKind

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(CheckoutError)
    async def checkout_error_handler(request: Request, exc: CheckoutError):
        # Erreurs de saisie/disponibilité: parcours client normal, pas une erreur système
        if exc.kind in (ErrorKind.VALIDATION, ErrorKind.AVAILABILITY):
            logger.info("checkout rejected path=%s code=%s", request.url.path, exc.code.value)
        else:
            logger.warning("checkout failed path=%s code=%s detail=%s", request.url.path, exc.code.value, exc.detail)
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        content = {"detail": exc.detail}
        if exc.status_code == 429:
            content = {**CheckoutError(ErrorCode.RATE_LIMITED).to_payload(), **content}
        return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))
