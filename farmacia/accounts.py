# farmacia/accounts.py
import logging

from django.db import transaction

from . import audit
from .exceptions import AuthError, NotFoundError, ValidationError
from .models import Configuracion, Usuario

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Credenciales inválidas"


def authenticate(correo: str, contrasena: str) -> Usuario:
    correo = (correo or "").strip().lower()
    usuario = Usuario.objects.filter(correo=correo).first()
    # mismo mensaje para usuario inexistente, inactivo o clave errada
    if usuario is None or not usuario.activo or not usuario.check_password(contrasena or ""):
        logger.warning("Login fallido para %s", correo or "<vacío>")
        raise AuthError(INVALID_CREDENTIALS)

    audit.record(usuario, "Inicio de sesión", {"correo": usuario.correo})
    logger.info("Login de usuario %s (%s)", usuario.pk, usuario.rol)
    return usuario


def _email_taken(correo: str, exclude_pk=None) -> bool:
    qs = Usuario.objects.filter(correo=correo)
    if exclude_pk is not None:
        qs = qs.exclude(pk=exclude_pk)
    return qs.exists()


@transaction.atomic
def create_user(*, actor: Usuario, nombre: str, correo: str, contrasena: str, rol: str, activo: bool = True) -> Usuario:
    if _email_taken(correo):
        raise ValidationError("El correo ya está registrado")
    usuario = Usuario(nombre=nombre.strip(), correo=correo, rol=rol, activo=activo)
    usuario.set_password(contrasena)
    usuario.save()
    audit.record(actor, f"Usuario creado: {usuario.nombre}", {
        "usuarioCreado": usuario.pk, "rol": usuario.rol, "correo": usuario.correo,
    })
    return usuario


@transaction.atomic
def update_user(usuario_id: int, *, actor: Usuario, **changes) -> Usuario:
    usuario = Usuario.objects.select_for_update().filter(pk=usuario_id).first()
    if usuario is None:
        raise NotFoundError("Usuario no encontrado")
    if usuario.pk == actor.pk and changes.get("activo") is False:
        raise ValidationError("No puedes desactivar tu propia cuenta")

    correo = changes.get("correo")
    if correo and correo != usuario.correo and _email_taken(correo, exclude_pk=usuario.pk):
        raise ValidationError("El correo ya está en uso por otro usuario")

    contrasena = changes.pop("contrasena", None)
    for attr in ("nombre", "correo", "rol", "activo"):
        if attr in changes:
            setattr(usuario, attr, changes[attr])
    if contrasena:
        usuario.set_password(contrasena)
    usuario.save()

    campos = sorted(k for k in changes if k != "contrasena") + (["contrasena"] if contrasena else [])
    audit.record(actor, f"Usuario actualizado: {usuario.nombre}", {
        "usuarioActualizado": usuario.pk, "cambios": campos,
    })
    return usuario


@transaction.atomic
def deactivate_user(usuario_id: int, *, actor: Usuario) -> Usuario:
    if int(usuario_id) == actor.pk:
        raise ValidationError("No puedes desactivar tu propia cuenta")
    usuario = Usuario.objects.select_for_update().filter(pk=usuario_id).first()
    if usuario is None:
        raise NotFoundError("Usuario no encontrado")
    usuario.activo = False
    usuario.save(update_fields=["activo", "fecha_actualizacion"])
    logger.info("Usuario %s desactivado por %s", usuario.pk, actor.pk)
    audit.record(actor, f"Usuario desactivado: {usuario.nombre}", {"usuarioDesactivado": usuario.pk})
    return usuario


@transaction.atomic
def update_settings(*, actor: Usuario, entries: dict) -> list:
    """Upsert de {clave: {valor, descripcion?, tipo_dato?}}. Devuelve las claves tocadas."""
    if not entries:
        raise ValidationError("No hay configuraciones para actualizar")
    for clave, data in entries.items():
        defaults = {"valor": str(data["valor"])}
        if data.get("descripcion") is not None:
            defaults["descripcion"] = data["descripcion"]
        if data.get("tipo_dato"):
            defaults["tipo_dato"] = data["tipo_dato"]
        Configuracion.objects.update_or_create(clave=clave, defaults=defaults)
    claves = sorted(entries)
    audit.record(actor, "Configuración actualizada", {"configuraciones": claves})
    return claves
