# farmacia/exceptions.py
import logging

from django.conf import settings
from django.http import Http404
from rest_framework import exceptions as drf_exceptions
from rest_framework import status
from rest_framework.response import Response

logger = logging.getLogger(__name__)


class FarmaciaError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Solicitud inválida"

    def __init__(self, message: str | None = None, **extra):
        self.message = message or self.default_message
        self.extra = extra
        super().__init__(self.message)


class ValidationError(FarmaciaError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Datos inválidos"


class AuthError(FarmaciaError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Token de acceso requerido"


class ForbiddenError(FarmaciaError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "No tienes permisos para realizar esta acción"


class NotFoundError(FarmaciaError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Recurso no encontrado"


class ConflictError(FarmaciaError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "El estado actual no permite esta operación"


class InvalidTransitionError(ConflictError):
    default_message = "Transición de estado no válida"


class InsufficientStockError(FarmaciaError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Stock insuficiente"


class InternalError(FarmaciaError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Error interno del servidor"


def _flatten_detail(detail):
    if isinstance(detail, list):
        return _flatten_detail(detail[0]) if detail else ""
    if isinstance(detail, dict):
        for value in detail.values():
            return _flatten_detail(value)
        return ""
    return str(detail)


def api_exception_handler(exc, context):
    """
    Convierte cualquier error en {"message": ...}.
    Lo desconocido se registra con traceback y sale como 500 genérico.
    """
    if isinstance(exc, FarmaciaError) and not isinstance(exc, InternalError):
        if exc.status_code >= 500:
            logger.error("%s: %s", type(exc).__name__, exc.message)
        body = {"message": exc.message}
        body.update(exc.extra)
        return Response(body, status=exc.status_code)

    if isinstance(exc, Http404):
        return Response({"message": NotFoundError.default_message}, status=status.HTTP_404_NOT_FOUND)

    if isinstance(exc, drf_exceptions.ValidationError):
        return Response(
            {"message": _flatten_detail(exc.detail) or ValidationError.default_message, "errors": exc.detail},
            status=status.HTTP_400_BAD_REQUEST,
        )

    if isinstance(exc, (drf_exceptions.NotAuthenticated, drf_exceptions.AuthenticationFailed)):
        return Response({"message": _flatten_detail(exc.detail)}, status=status.HTTP_401_UNAUTHORIZED)

    if isinstance(exc, drf_exceptions.APIException):
        return Response({"message": _flatten_detail(exc.detail)}, status=exc.status_code)

    view = context.get("view")
    logger.exception("Error no controlado en %s", type(view).__name__ if view else "?", exc_info=exc)
    body = {"message": InternalError.default_message}
    if settings.SIGFARMA_ENV == "development":
        body["error"] = str(exc)
    return Response(body, status=status.HTTP_500_INTERNAL_SERVER_ERROR)
