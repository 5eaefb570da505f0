# farmacia/authentication.py
from datetime import datetime, timedelta, timezone

import jwt
from django.conf import settings
from rest_framework.authentication import BaseAuthentication

from .exceptions import AuthError
from .models import Usuario


def issue_token(usuario: Usuario) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "usuarioId": usuario.pk,
        "correo": usuario.correo,
        "rol": usuario.rol,
        "iat": now,
        "exp": now + timedelta(days=settings.JWT_EXPIRES_DAYS),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthError("La sesión ha expirado")
    except jwt.InvalidTokenError:
        raise AuthError("Token inválido")


def set_auth_cookie(response, token: str):
    response.set_cookie(
        settings.AUTH_COOKIE_NAME,
        token,
        max_age=int(timedelta(days=settings.JWT_EXPIRES_DAYS).total_seconds()),
        httponly=True,
        secure=settings.AUTH_COOKIE_SECURE,
        samesite=settings.AUTH_COOKIE_SAMESITE,
    )
    return response


def clear_auth_cookie(response):
    response.delete_cookie(settings.AUTH_COOKIE_NAME, samesite=settings.AUTH_COOKIE_SAMESITE)
    return response


class JWTCookieAuthentication(BaseAuthentication):
    """
    Lee el JWT de la cookie `token` (o de `Authorization: Bearer ...`).
    Sin token devuelve None; el permiso decide si eso es un 401.
    """

    def _raw_token(self, request):
        token = request.COOKIES.get(settings.AUTH_COOKIE_NAME)
        if token:
            return token
        header = request.META.get("HTTP_AUTHORIZATION", "")
        if header.startswith("Bearer "):
            return header[len("Bearer "):].strip() or None
        return None

    def authenticate(self, request):
        token = self._raw_token(request)
        if not token:
            return None

        claims = decode_token(token)
        usuario = Usuario.objects.filter(pk=claims.get("usuarioId")).first()
        if usuario is None or not usuario.activo:
            raise AuthError("Usuario no encontrado o inactivo")
        return usuario, claims

    def authenticate_header(self, request):
        # hace que DRF responda 401 (no 403) cuando falta la sesión
        return 'Bearer realm="api"'
