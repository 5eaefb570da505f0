# farmacia/alerts.py
"""
Consultas de stock bajo y vencimientos, y la generación de notificaciones
que las acompaña.

Las notificaciones se crean como efecto lateral de esas consultas. Cada
condición (producto, tipo y lote) tiene a lo sumo una notificación vigente,
esté leída, descartada o no; solo cuando la condición deja de cumplirse se
cierra y una recaída posterior genera una nueva.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta

from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from .models import Lote, NotificacionReabastecimiento as Notif, Producto
from .services import setting_int

logger = logging.getLogger(__name__)


@dataclass
class ExpirationWindow:
    today: date
    roja: date
    amarilla: date

    @classmethod
    def current(cls, today: date | None = None) -> "ExpirationWindow":
        today = today or timezone.localdate()
        roja = setting_int("alerta_roja_dias", settings.ALERTA_ROJA_DIAS)
        amarilla = setting_int("alerta_amarilla_dias", settings.ALERTA_AMARILLA_DIAS)
        return cls(today=today, roja=today + timedelta(days=roja), amarilla=today + timedelta(days=amarilla))

    def bucket(self, fecha: date) -> str:
        if fecha < self.today:
            return "expired"
        if fecha <= self.roja:
            return "critical"
        if fecha <= self.amarilla:
            return "warning"
        return "safe"


@dataclass
class ExpiringLots:
    expired: list = field(default_factory=list)
    critical: list = field(default_factory=list)
    warning: list = field(default_factory=list)
    safe: list = field(default_factory=list)


def low_stock_products():
    return (
        Producto.objects
        .filter(activo=True, stock_total__lt=F("stock_minimo"))
        .order_by("stock_total", "nombre")
    )


def categorize_lots(*, window: ExpirationWindow | None = None, include_safe: bool = False) -> ExpiringLots:
    window = window or ExpirationWindow.current()
    qs = Lote.objects.filter(cantidad_disponible__gt=0).select_related("producto").order_by("fecha_vencimiento", "id")
    if not include_safe:
        qs = qs.filter(fecha_vencimiento__lte=window.amarilla)
    out = ExpiringLots()
    for lote in qs:
        getattr(out, window.bucket(lote.fecha_vencimiento)).append(lote)
    return out


# ============ Generación ============

_LOT_TYPES = {
    "expired": (Notif.VENCIDO, "Alta"),
    "critical": (Notif.VENCIMIENTO_CRITICO, "Alta"),
    "warning": (Notif.VENCIMIENTO_PROXIMO, "Media"),
}


def _lot_message(tipo: str, lote: Lote, today: date) -> str:
    nombre = lote.producto.nombre
    if tipo == Notif.VENCIDO:
        return f"{nombre}: el lote {lote.numero_lote} venció el {lote.fecha_vencimiento.isoformat()}"
    dias = (lote.fecha_vencimiento - today).days
    return f"{nombre}: el lote {lote.numero_lote} vence en {dias} días"


def _open_conditions() -> dict:
    """(producto_id, tipo, lote_id) -> id de la notificación vigente."""
    rows = Notif.objects.filter(condicion_vigente=True).values_list(
        "id", "producto_id", "tipo_notificacion", "lote_id")
    return {(pid, tipo, lote_id): pk for pk, pid, tipo, lote_id in rows}


@transaction.atomic
def sync_stock_alerts(today: date | None = None) -> int:
    """
    Crea una notificación por cada condición nueva y cierra las que ya no se
    cumplen. Leer o descartar una notificación no la regenera mientras la
    condición siga vigente. Devuelve cuántas se crearon.
    """
    window = ExpirationWindow.current(today)
    abiertas = _open_conditions()
    actuales = set()
    nuevas = []

    for producto in low_stock_products():
        key = (producto.pk, Notif.STOCK_BAJO, None)
        actuales.add(key)
        if key in abiertas:
            continue
        nuevas.append(Notif(
            producto=producto,
            tipo_notificacion=Notif.STOCK_BAJO,
            mensaje=f"{producto.nombre}: stock {producto.stock_total} por debajo del mínimo {producto.stock_minimo}",
            prioridad="Alta" if producto.stock_total == 0 else "Media",
            condicion_vigente=True,
        ))

    lots = categorize_lots(window=window)
    for bucket, (tipo, prioridad) in _LOT_TYPES.items():
        for lote in getattr(lots, bucket):
            key = (lote.producto_id, tipo, lote.pk)
            actuales.add(key)
            if key in abiertas:
                continue
            nuevas.append(Notif(
                producto_id=lote.producto_id,
                lote=lote,
                tipo_notificacion=tipo,
                mensaje=_lot_message(tipo, lote, window.today),
                prioridad=prioridad,
                condicion_vigente=True,
            ))

    cerradas = [pk for key, pk in abiertas.items() if key not in actuales]
    if cerradas:
        Notif.objects.filter(pk__in=cerradas).update(condicion_vigente=False)

    if nuevas:
        # otra petición concurrente pudo crear la misma condición
        Notif.objects.bulk_create(nuevas, ignore_conflicts=True)
        logger.info("Notificaciones generadas: %d, condiciones cerradas: %d", len(nuevas), len(cerradas))
    return len(nuevas)
