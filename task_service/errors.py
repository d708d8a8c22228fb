"""Errores del servicio y los manejadores que los convierten en respuestas {message}."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError, ResponseValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    """Error esperado del servicio; se responde con su status_code y mensaje."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ServiceError):
    """Campo ausente o inválido."""
    status_code = status.HTTP_400_BAD_REQUEST


class ConflictError(ServiceError):
    """Nombre o email ya registrado."""
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND


class AuthError(ServiceError):
    """Contraseña incorrecta."""
    status_code = status.HTTP_400_BAD_REQUEST


class InvalidTokenError(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED


class AuthorizationError(ServiceError):
    """El usuario no puede modificar un recurso que no creó."""
    status_code = status.HTTP_403_FORBIDDEN


def _describe_validation_error(exc: RequestValidationError) -> str:
    """Construye un mensaje legible a partir del primer error de pydantic."""
    errors = exc.errors()
    if not errors:
        return "Datos de entrada inválidos"
    first = errors[0]
    # loc es ('body', 'campo') o ('query', 'campo')
    field = ".".join(str(part) for part in first.get("loc", ())[1:]) or "body"
    if first.get("type") == "missing":
        return f"El campo '{field}' es obligatorio"
    return f"El campo '{field}' es inválido: {first.get('msg')}"


def register_exception_handlers(app: FastAPI) -> None:
    """Registra los manejadores para que todo error se responda como {message}."""

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        logger.warning(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content={"message": exc.message})

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"message": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(ResponseValidationError)
    async def response_validation_handler(request: Request, exc: ResponseValidationError):
        # Documento guardado con una forma que la respuesta no admite; el detalle sólo va al log
        logger.error(f"Respuesta inválida en {request.method} {request.url.path}: {exc.errors()}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"message": "Error interno al construir la respuesta"},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        message = _describe_validation_error(exc)
        logger.warning(f"Validación fallida en {request.url.path}: {message}")
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"message": message})
