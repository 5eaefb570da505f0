# farmacia/reports.py

from collections import OrderedDict
from datetime import datetime, time, timedelta
from decimal import Decimal

from django.db.models import Count, DecimalField, ExpressionWrapper, F, Sum
from django.db.models.functions import Coalesce
from django.utils import timezone

from .alerts import ExpirationWindow, categorize_lots, low_stock_products
from .models import Lote, Producto, Venta
from .serializers import LoteSerializer, ProductoSerializer, VentaSerializer


ZERO = Decimal("0.00")


def _start_of(day):
    return timezone.make_aware(datetime.combine(day, time.min))


def _sales_summary(qs):
    agg = qs.aggregate(total=Coalesce(Sum("total_a_pagar"), ZERO), count=Count("id"))
    return {"total": agg["total"], "count": agg["count"]}


def _lot_value(lotes) -> Decimal:
    return sum((l.precio_compra * l.cantidad_disponible for l in lotes), ZERO)


def dashboard() -> dict:
    today = timezone.localdate()
    completadas = Venta.objects.filter(estado=Venta.COMPLETADA)
    window = ExpirationWindow.current(today)
    lots = categorize_lots(window=window)

    recientes = (
        Venta.objects.select_related("usuario")
        .prefetch_related("detalles__lote__producto")
        .order_by("-fecha_venta", "-id")[:5]
    )
    return {
        "sales": {
            "today": _sales_summary(completadas.filter(fecha_venta__gte=_start_of(today))),
            "month": _sales_summary(completadas.filter(fecha_venta__gte=_start_of(today.replace(day=1)))),
        },
        "inventory": {
            "total_products": Producto.objects.filter(activo=True).count(),
            "low_stock_count": low_stock_products().count(),
            "expiration_alerts": {
                "expired": len(lots.expired),
                "critical": len(lots.critical),
                "warning": len(lots.warning),
            },
        },
        "recent_activity": VentaSerializer(recientes, many=True).data,
    }


def sales_report(start=None, end=None) -> dict:
    """Ventas completadas entre `start` y `end` (fechas, inclusivas). Por defecto, últimos 30 días."""
    end = end or timezone.localdate()
    start = start or end - timedelta(days=30)
    ventas = list(
        Venta.objects.filter(
            estado=Venta.COMPLETADA,
            fecha_venta__gte=_start_of(start),
            fecha_venta__lt=_start_of(end + timedelta(days=1)),
        )
        .select_related("usuario")
        .order_by("-fecha_venta", "-id")
    )

    daily = OrderedDict()
    for v in ventas:
        key = timezone.localtime(v.fecha_venta).date().isoformat()
        row = daily.setdefault(key, {"total": ZERO, "count": 0})
        row["total"] += v.total_a_pagar
        row["count"] += 1

    total = sum((v.total_a_pagar for v in ventas), ZERO)
    return {
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
        "total_sales": total,
        "total_transactions": len(ventas),
        "average_ticket": (total / len(ventas)).quantize(Decimal("0.01")) if ventas else ZERO,
        "daily_breakdown": daily,
    }


def inventory_report() -> dict:
    valor_lote = ExpressionWrapper(F("precio_compra") * F("cantidad_disponible"),
                                   output_field=DecimalField(max_digits=16, decimal_places=2))
    productos = Producto.objects.filter(activo=True).order_by("nombre")
    values = dict(
        Lote.objects.filter(cantidad_disponible__gt=0, producto__activo=True)
        .values("producto_id")
        .annotate(v=Sum(valor_lote))
        .values_list("producto_id", "v")
    )
    rows = []
    for p in productos:
        data = ProductoSerializer(p).data
        data["inventory_value"] = values.get(p.pk) or ZERO
        rows.append(data)

    return {
        "total_products": len(rows),
        "total_inventory_value": sum((r["inventory_value"] for r in rows), ZERO),
        "total_units": sum(p.stock_total for p in productos),
        "products": rows,
    }


def expiration_report() -> dict:
    lots = categorize_lots(include_safe=True)
    return {
        "total_lotes": sum(len(getattr(lots, b)) for b in ("expired", "critical", "warning", "safe")),
        "expired_count": len(lots.expired),
        "critical_count": len(lots.critical),
        "warning_count": len(lots.warning),
        "safe_count": len(lots.safe),
        "expired_value": _lot_value(lots.expired),
        "categorized": {
            "expired": LoteSerializer(lots.expired, many=True).data,
            "critical": LoteSerializer(lots.critical, many=True).data,
            "warning": LoteSerializer(lots.warning, many=True).data,
            "safe": LoteSerializer(lots.safe, many=True).data,
        },
    }
