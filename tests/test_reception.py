from datetime import date
from decimal import Decimal

import pytest

from farmacia import services
from farmacia.exceptions import ConflictError, InvalidTransitionError, ValidationError
from farmacia.models import ActaRecepcion, HistorialCambio, Lote, Producto

from .conftest import make_lot

pytestmark = pytest.mark.django_db


def _payload(proveedor, producto_a, producto_b):
    return {
        "proveedor_id": proveedor.pk,
        "numero_factura": "FAC-1001",
        "lineas": [
            {"producto_id": producto_a.pk, "cantidad": 10, "fecha_vencimiento": "2026-01-01", "precio_compra": "2000"},
            {"producto_id": producto_b.pk, "cantidad": 5, "fecha_vencimiento": "2025-06-01"},
        ],
    }


def test_create_then_approve_scenario(inventario_client, admin_client, proveedor, producto_a, producto_b):
    r = inventario_client.post("/api/inventory/reception", _payload(proveedor, producto_a, producto_b), format="json")
    assert r.status_code == 201
    acta = r.json()["reception"]
    assert acta["estado"] == ActaRecepcion.PENDIENTE
    assert len(acta["detalles"]) == 2
    # sin efecto en stock mientras está pendiente
    assert Lote.objects.count() == 0

    r = admin_client.put(f"/api/inventory/reception/{acta['id']}/approve")
    assert r.status_code == 200
    assert r.json()["reception"]["estado"] == ActaRecepcion.COMPLETADA

    lote_a = Lote.objects.get(producto=producto_a)
    assert lote_a.cantidad_disponible == 10
    assert lote_a.fecha_vencimiento == date(2026, 1, 1)
    # precio de venta = compra * (1 + 30%)
    assert lote_a.precio_venta_lote == Decimal("2600.00")
    producto_a.refresh_from_db()
    producto_b.refresh_from_db()
    assert producto_a.stock_total == 10
    assert producto_b.stock_total == 5


def test_approve_increments_lot_with_same_expiration(admin, inventario, proveedor, producto_a):
    existing = make_lot(producto_a, 7, date(2027, 3, 1))
    acta = services.create_reception(
        proveedor_id=proveedor.pk, usuario=inventario,
        lineas=[services.ReceptionLine(producto_id=producto_a.pk, cantidad=4, fecha_vencimiento=date(2027, 3, 1))],
    )
    services.approve_reception(acta.pk, aprobador=admin)

    existing.refresh_from_db()
    assert existing.cantidad_disponible == 11
    assert Lote.objects.filter(producto=producto_a).count() == 1
    producto_a.refresh_from_db()
    assert producto_a.stock_total == 11


def test_stock_after_approval_is_before_plus_lines(admin, inventario, proveedor, producto_a):
    make_lot(producto_a, 20, date(2027, 1, 1))
    before = Producto.objects.get(pk=producto_a.pk).stock_total
    lineas = [
        services.ReceptionLine(producto_id=producto_a.pk, cantidad=3, fecha_vencimiento=date(2027, 1, 1)),
        services.ReceptionLine(producto_id=producto_a.pk, cantidad=9, fecha_vencimiento=date(2028, 2, 2)),
    ]
    acta = services.create_reception(proveedor_id=proveedor.pk, usuario=inventario, lineas=lineas)
    services.approve_reception(acta.pk, aprobador=admin)
    assert Producto.objects.get(pk=producto_a.pk).stock_total == before + 12


def test_double_approve_conflicts_and_stock_moves_once(admin_client, admin, inventario, proveedor, producto_a):
    acta = services.create_reception(
        proveedor_id=proveedor.pk, usuario=inventario,
        lineas=[services.ReceptionLine(producto_id=producto_a.pk, cantidad=10, fecha_vencimiento=date(2026, 1, 1))],
    )
    assert admin_client.put(f"/api/inventory/reception/{acta.pk}/approve").status_code == 200
    r = admin_client.put(f"/api/inventory/reception/{acta.pk}/approve")
    assert r.status_code == 409
    assert r.json()["estadoActual"] == ActaRecepcion.COMPLETADA

    producto_a.refresh_from_db()
    assert producto_a.stock_total == 10

    with pytest.raises(ConflictError):
        services.approve_reception(acta.pk, aprobador=admin)


def test_complete_is_alias_of_approve(admin_client, inventario, proveedor, producto_a):
    acta = services.create_reception(
        proveedor_id=proveedor.pk, usuario=inventario,
        lineas=[services.ReceptionLine(producto_id=producto_a.pk, cantidad=2, fecha_vencimiento=date(2026, 5, 5))],
    )
    r = admin_client.put(f"/api/inventory/reception/{acta.pk}/complete")
    assert r.status_code == 200
    assert r.json()["reception"]["estado"] == ActaRecepcion.COMPLETADA


def test_reject_requires_reason_and_has_no_stock_effect(admin_client, inventario, proveedor, producto_a):
    acta = services.create_reception(
        proveedor_id=proveedor.pk, usuario=inventario,
        lineas=[services.ReceptionLine(producto_id=producto_a.pk, cantidad=2, fecha_vencimiento=date(2026, 5, 5))],
    )
    assert admin_client.put(f"/api/inventory/reception/{acta.pk}/reject", {}, format="json").status_code == 400

    r = admin_client.put(f"/api/inventory/reception/{acta.pk}/reject", {"motivo": "Producto dañado"}, format="json")
    assert r.status_code == 200
    assert r.json()["reception"]["estado"] == ActaRecepcion.RECHAZADA
    assert r.json()["reception"]["motivo_rechazo"] == "Producto dañado"
    assert Lote.objects.count() == 0

    # un acta rechazada no se puede aprobar después
    assert admin_client.put(f"/api/inventory/reception/{acta.pk}/approve").status_code == 409


def test_create_validations(inventario, proveedor, producto_a):
    with pytest.raises(ValidationError):
        services.create_reception(proveedor_id=proveedor.pk, usuario=inventario, lineas=[])
    with pytest.raises(ValidationError):
        services.create_reception(
            proveedor_id=proveedor.pk, usuario=inventario,
            lineas=[services.ReceptionLine(producto_id=999, cantidad=1, fecha_vencimiento=date(2026, 1, 1))],
        )
    producto_a.activo = False
    producto_a.save()
    with pytest.raises(ValidationError):
        services.create_reception(
            proveedor_id=proveedor.pk, usuario=inventario,
            lineas=[services.ReceptionLine(producto_id=producto_a.pk, cantidad=1, fecha_vencimiento=date(2026, 1, 1))],
        )


def test_api_rejects_inactive_product(inventario_client, proveedor, producto_a, producto_b):
    producto_a.activo = False
    producto_a.save()
    r = inventario_client.post("/api/inventory/reception", _payload(proveedor, producto_a, producto_b), format="json")
    assert r.status_code == 400
    assert str(producto_a.pk) in r.json()["message"]
    assert not ActaRecepcion.objects.exists()


def test_api_rejects_non_positive_quantity(inventario_client, proveedor, producto_a):
    payload = {
        "proveedor_id": proveedor.pk,
        "lineas": [{"producto_id": producto_a.pk, "cantidad": 0, "fecha_vencimiento": "2026-01-01"}],
    }
    r = inventario_client.post("/api/inventory/reception", payload, format="json")
    assert r.status_code == 400
    assert "message" in r.json()


def test_pending_list_is_oldest_first_and_admin_only(admin_client, inventario_client, inventario, proveedor, producto_a):
    ids = []
    for _ in range(3):
        acta = services.create_reception(
            proveedor_id=proveedor.pk, usuario=inventario,
            lineas=[services.ReceptionLine(producto_id=producto_a.pk, cantidad=1, fecha_vencimiento=date(2026, 1, 1))],
        )
        ids.append(acta.pk)

    assert inventario_client.get("/api/inventory/reception/pending-approvals").status_code == 403
    r = admin_client.get("/api/inventory/reception/pending-approvals")
    assert r.status_code == 200
    assert [a["id"] for a in r.json()] == ids


def test_cashier_cannot_create_reception(cajero_client, proveedor, producto_a, producto_b):
    r = cajero_client.post("/api/inventory/reception", _payload(proveedor, producto_a, producto_b), format="json")
    assert r.status_code == 403


def test_inventory_cannot_approve(inventario_client, inventario, proveedor, producto_a):
    acta = services.create_reception(
        proveedor_id=proveedor.pk, usuario=inventario,
        lineas=[services.ReceptionLine(producto_id=producto_a.pk, cantidad=1, fecha_vencimiento=date(2026, 1, 1))],
    )
    assert inventario_client.put(f"/api/inventory/reception/{acta.pk}/approve").status_code == 403
    acta.refresh_from_db()
    assert acta.estado == ActaRecepcion.PENDIENTE


def test_list_filters_by_estado(admin_client, admin, inventario, proveedor, producto_a):
    a1 = services.create_reception(
        proveedor_id=proveedor.pk, usuario=inventario,
        lineas=[services.ReceptionLine(producto_id=producto_a.pk, cantidad=1, fecha_vencimiento=date(2026, 1, 1))],
    )
    services.create_reception(
        proveedor_id=proveedor.pk, usuario=inventario,
        lineas=[services.ReceptionLine(producto_id=producto_a.pk, cantidad=1, fecha_vencimiento=date(2026, 1, 1))],
    )
    services.approve_reception(a1.pk, aprobador=admin)

    r = admin_client.get("/api/inventory/reception", {"estado": ActaRecepcion.COMPLETADA})
    body = r.json()
    assert body["pagination"]["total"] == 1
    assert body["receptions"][0]["id"] == a1.pk


def test_approval_audit_entry_after_commit(admin, inventario, proveedor, producto_a, django_capture_on_commit_callbacks):
    acta = services.create_reception(
        proveedor_id=proveedor.pk, usuario=inventario,
        lineas=[services.ReceptionLine(producto_id=producto_a.pk, cantidad=1, fecha_vencimiento=date(2026, 1, 1))],
    )
    with django_capture_on_commit_callbacks(execute=True) as callbacks:
        services.approve_reception(acta.pk, aprobador=admin)
    assert len(callbacks) == 1
    entry = HistorialCambio.objects.get(usuario=admin)
    assert entry.detalles["actaId"] == acta.pk


def test_no_audit_entry_when_approval_fails(admin, inventario, proveedor, producto_a, django_capture_on_commit_callbacks):
    acta = services.create_reception(
        proveedor_id=proveedor.pk, usuario=inventario,
        lineas=[services.ReceptionLine(producto_id=producto_a.pk, cantidad=1, fecha_vencimiento=date(2026, 1, 1))],
    )
    services.reject_reception(acta.pk, aprobador=admin, motivo="no")
    with django_capture_on_commit_callbacks(execute=True) as callbacks:
        with pytest.raises(InvalidTransitionError):
            services.approve_reception(acta.pk, aprobador=admin)
    assert callbacks == []
