from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from farmacia import reports, services
from farmacia.models import Venta

from .conftest import make_lot

pytestmark = pytest.mark.django_db


def _sell(usuario, producto, cantidad):
    return services.create_sale(usuario=usuario, lineas=[services.SaleLine(producto_id=producto.pk, cantidad=cantidad)])


def test_dashboard_counts(cajero_client, cajero, producto_a, producto_b, future):
    today = timezone.localdate()
    make_lot(producto_a, 100, future, precio_venta="1000.00")
    make_lot(producto_b, 5, today + timedelta(days=20))
    make_lot(producto_b, 5, today - timedelta(days=1))
    _sell(cajero, producto_a, 2)
    cancelada = _sell(cajero, producto_a, 1)
    services.cancel_sale(cancelada.pk, usuario=cajero)

    r = cajero_client.get("/api/reports/dashboard")
    assert r.status_code == 200
    body = r.json()
    assert body["sales"]["today"]["count"] == 1
    assert Decimal(str(body["sales"]["today"]["total"])) == Decimal("2000.00")
    assert body["inventory"]["total_products"] == 2
    assert body["inventory"]["low_stock_count"] == 1
    assert body["inventory"]["expiration_alerts"] == {"expired": 1, "critical": 1, "warning": 0}
    assert len(body["recent_activity"]) == 2


def test_sales_report_range_and_breakdown(cajero, producto_a, future):
    make_lot(producto_a, 100, future, precio_venta="1000.00")
    _sell(cajero, producto_a, 1)
    _sell(cajero, producto_a, 3)
    vieja = _sell(cajero, producto_a, 5)
    Venta.objects.filter(pk=vieja.pk).update(fecha_venta=timezone.now() - timedelta(days=60))

    today = timezone.localdate()
    data = reports.sales_report()
    assert data["total_transactions"] == 2
    assert data["total_sales"] == Decimal("4000.00")
    assert data["average_ticket"] == Decimal("2000.00")
    assert data["daily_breakdown"][today.isoformat()]["count"] == 2

    data = reports.sales_report(today - timedelta(days=90), today)
    assert data["total_transactions"] == 3


def test_sales_report_rejects_inverted_range(cajero_client):
    r = cajero_client.get("/api/reports/sales", {"startDate": "2026-02-01", "endDate": "2026-01-01"})
    assert r.status_code == 400
    r = cajero_client.get("/api/reports/sales", {"startDate": "ayer"})
    assert r.status_code == 400


def test_inventory_valuation_uses_purchase_price(producto_a, producto_b, future):
    make_lot(producto_a, 10, future, precio_compra="1000.00")
    make_lot(producto_a, 4, future + timedelta(days=1), precio_compra="1250.00")
    make_lot(producto_b, 2, future, precio_compra="300.00")

    data = reports.inventory_report()
    assert data["total_products"] == 2
    assert data["total_units"] == 16
    assert data["total_inventory_value"] == Decimal("15600.00")
    by_id = {row["id"]: row for row in data["products"]}
    assert by_id[producto_a.pk]["inventory_value"] == Decimal("15000.00")


def test_expiration_report_buckets(producto_a, future):
    today = timezone.localdate()
    make_lot(producto_a, 2, today - timedelta(days=5), precio_compra="500.00")
    make_lot(producto_a, 2, today + timedelta(days=100))
    make_lot(producto_a, 2, today + timedelta(days=300))
    make_lot(producto_a, 2, future)
    make_lot(producto_a, 0, today - timedelta(days=50))

    data = reports.expiration_report()
    assert data["total_lotes"] == 4
    assert (data["expired_count"], data["critical_count"], data["warning_count"], data["safe_count"]) == (1, 1, 1, 1)
    assert data["expired_value"] == Decimal("1000.00")


def test_reports_need_authentication(anon_client):
    assert anon_client.get("/api/reports/inventory").status_code == 401
