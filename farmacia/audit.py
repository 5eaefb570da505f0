# farmacia/audit.py
import json
import logging

from django.core.serializers.json import DjangoJSONEncoder
from django.db import transaction

from .models import HistorialCambio

logger = logging.getLogger(__name__)


def _jsonable(detalles):
    # Decimal, fechas, etc. -> tipos JSON nativos
    return json.loads(json.dumps(detalles or {}, cls=DjangoJSONEncoder))


def record(usuario, accion: str, detalles: dict | None = None):
    """
    Agenda una entrada de HistorialCambio para después del commit.

    Si la transacción hace rollback, la entrada no se escribe. Fuera de un
    bloque atómico se escribe de inmediato.
    """
    usuario_id = usuario.pk if hasattr(usuario, "pk") else usuario
    payload = _jsonable(detalles)

    def _write():
        HistorialCambio.objects.create(usuario_id=usuario_id, accion=accion, detalles=payload)
        logger.debug("auditoría: usuario=%s %s", usuario_id, accion)

    transaction.on_commit(_write)
