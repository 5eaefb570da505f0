from datetime import date
from decimal import Decimal

import pytest

from farmacia import services
from farmacia.exceptions import ConflictError, InvalidTransitionError, ValidationError
from farmacia.models import ActaRecepcion, Configuracion, OrdenCompra, Producto, Proveedor

from .conftest import make_lot

pytestmark = pytest.mark.django_db


def _order(usuario, proveedor, producto, cantidad=10, precio="1000"):
    return services.create_order(
        proveedor_id=proveedor.pk, usuario=usuario,
        lineas=[services.OrderLine(producto_id=producto.pk, cantidad_solicitada=cantidad, precio_unitario=Decimal(precio))],
    )


def test_create_order_computes_totals_and_number(inventario_client, proveedor, producto_a, producto_b):
    payload = {
        "proveedor_id": proveedor.pk,
        "lineas": [
            {"producto_id": producto_a.pk, "cantidad_solicitada": 10, "precio_unitario": "1000"},
            {"producto_id": producto_b.pk, "cantidad_solicitada": 5, "precio_unitario": "200"},
        ],
    }
    r = inventario_client.post("/api/orders", payload, format="json")
    assert r.status_code == 201
    body = r.json()
    assert body["numero_orden"] == "OC-000001"
    assert body["estado"] == OrdenCompra.PENDIENTE
    assert Decimal(body["subtotal"]) == Decimal("11000.00")
    assert Decimal(body["impuestos"]) == Decimal("2090.00")
    assert Decimal(body["total"]) == Decimal("13090.00")

    r = inventario_client.post("/api/orders", payload, format="json")
    assert r.json()["numero_orden"] == "OC-000002"


def test_create_order_rejects_inactive_or_unknown_product(inventario_client, proveedor, producto_a):
    producto_a.activo = False
    producto_a.save()
    for pid in (producto_a.pk, 999):
        payload = {
            "proveedor_id": proveedor.pk,
            "lineas": [{"producto_id": pid, "cantidad_solicitada": 3, "precio_unitario": "100"}],
        }
        r = inventario_client.post("/api/orders", payload, format="json")
        assert r.status_code == 400
    assert not OrdenCompra.objects.exists()


def test_iva_comes_from_settings(inventario, proveedor, producto_a):
    Configuracion.objects.create(clave="iva_porcentaje", valor="5")
    orden = _order(inventario, proveedor, producto_a, cantidad=10, precio="100")
    assert orden.impuestos == Decimal("50.00")
    assert orden.total == Decimal("1050.00")


def test_linear_transitions(admin_client, admin, proveedor, producto_a):
    orden = _order(admin, proveedor, producto_a)
    for estado in (OrdenCompra.ENVIADA, OrdenCompra.RECIBIDA, OrdenCompra.COMPLETADA):
        r = admin_client.put(f"/api/orders/{orden.pk}/status", {"estado": estado}, format="json")
        assert r.status_code == 200
        assert r.json()["estado"] == estado
    orden.refresh_from_db()
    assert orden.fecha_recepcion is not None


def test_skipping_a_state_is_invalid_transition(admin, proveedor, producto_a):
    orden = _order(admin, proveedor, producto_a)
    with pytest.raises(InvalidTransitionError):
        services.update_order_status(orden.pk, estado=OrdenCompra.COMPLETADA, usuario=admin)
    orden.refresh_from_db()
    assert orden.estado == OrdenCompra.PENDIENTE


def test_cancelled_order_is_terminal(admin_client, admin, proveedor, producto_a):
    orden = _order(admin, proveedor, producto_a)
    services.update_order_status(orden.pk, estado=OrdenCompra.CANCELADA, usuario=admin)
    r = admin_client.put(f"/api/orders/{orden.pk}/status", {"estado": OrdenCompra.ENVIADA}, format="json")
    assert r.status_code == 409


def test_unknown_status_is_400(admin_client, admin, proveedor, producto_a):
    orden = _order(admin, proveedor, producto_a)
    r = admin_client.put(f"/api/orders/{orden.pk}/status", {"estado": "Perdida"}, format="json")
    assert r.status_code == 400


def test_cashier_can_read_but_not_create(cajero_client, admin, proveedor, producto_a):
    _order(admin, proveedor, producto_a)
    assert cajero_client.get("/api/orders").status_code == 200
    r = cajero_client.post("/api/orders", {"proveedor_id": proveedor.pk, "lineas": []}, format="json")
    assert r.status_code == 403


# ---------- auto-órdenes ----------

def test_auto_generate_groups_by_provider_and_skips_healthy_products(inventario, proveedor):
    otro = Proveedor.objects.create(nombre="Distribuidora Andina", nit="800111222-3")
    bajo_1 = Producto.objects.create(nombre="A", stock_minimo=20, proveedor_preferido=proveedor)
    bajo_2 = Producto.objects.create(nombre="B", stock_minimo=5, stock_maximo=50, proveedor_preferido=proveedor)
    bajo_3 = Producto.objects.create(nombre="C", stock_minimo=8, proveedor_preferido=otro)
    sano = Producto.objects.create(nombre="D", stock_minimo=5, proveedor_preferido=proveedor)
    justo = Producto.objects.create(nombre="E", stock_minimo=5, proveedor_preferido=proveedor)
    make_lot(bajo_1, 4, date(2027, 1, 1), precio_compra="800.00")
    make_lot(sano, 30, date(2027, 1, 1))
    make_lot(justo, 5, date(2027, 1, 1))

    result = services.generate_auto_orders(usuario=inventario)

    assert result.unresolved == []
    assert len(result.orders) == 2
    by_provider = {o.proveedor_id: o for o in result.orders}
    lineas = {d.producto_id: d for d in by_provider[proveedor.pk].detalles.all()}
    assert set(lineas) == {bajo_1.pk, bajo_2.pk}
    # objetivo = 2 x mínimo = 40, stock 4 -> 36
    assert lineas[bajo_1.pk].cantidad_solicitada == 36
    assert lineas[bajo_1.pk].precio_unitario == Decimal("800.00")
    # objetivo = stock_maximo = 50
    assert lineas[bajo_2.pk].cantidad_solicitada == 50
    # objetivo 16 -> 16 (por encima del mínimo de pedido 10)
    assert by_provider[otro.pk].detalles.get().cantidad_solicitada == 16

    for orden in result.orders:
        assert orden.es_automatica
        assert orden.estado == OrdenCompra.PENDIENTE
        assert orden.numero_orden.startswith("OC-AUTO-")
        assert all(d.cantidad_solicitada > 0 for d in orden.detalles.all())
        assert not orden.detalles.filter(producto__in=[sano, justo]).exists()


def test_auto_generate_respects_min_order_quantity(inventario, proveedor):
    Configuracion.objects.create(clave="cantidad_minima_pedido", valor="25")
    p = Producto.objects.create(nombre="Gasa", stock_minimo=3, proveedor_preferido=proveedor,
                                precio_venta_sugerido=Decimal("1000"))
    make_lot(p, 2, date(2027, 1, 1), precio_compra="0.00")
    result = services.generate_auto_orders(usuario=inventario)
    linea = result.orders[0].detalles.get()
    assert linea.cantidad_solicitada == 25
    # sin precio de compra previo: 70% del precio sugerido
    assert linea.precio_unitario == Decimal("700.00")


def test_auto_generate_falls_back_to_last_reception_provider(admin, inventario, proveedor):
    p = Producto.objects.create(nombre="Suero", stock_minimo=100)
    acta = services.create_reception(
        proveedor_id=proveedor.pk, usuario=inventario,
        lineas=[services.ReceptionLine(producto_id=p.pk, cantidad=10, fecha_vencimiento=date(2027, 1, 1))],
    )
    services.approve_reception(acta.pk, aprobador=admin)

    result = services.generate_auto_orders(usuario=inventario)
    assert [o.proveedor_id for o in result.orders] == [proveedor.pk]


def test_auto_generate_reports_unresolved_products(inventario_client):
    p = Producto.objects.create(nombre="Huérfano", stock_minimo=10)
    r = inventario_client.post("/api/orders/auto-generate")
    assert r.status_code == 200
    body = r.json()
    assert body["orders"] == []
    assert [u["producto_id"] for u in body["unresolved"]] == [p.pk]


def test_auto_generate_with_nothing_low(inventario_client, producto_a, future):
    make_lot(producto_a, 500, future)
    r = inventario_client.post("/api/orders/auto-generate")
    assert r.status_code == 200
    assert r.json()["message"] == "No hay productos con stock bajo"


# ---------- recepción desde orden ----------

def test_create_reception_from_received_order(inventario_client, admin_client, inventario, proveedor, producto_a):
    orden = _order(inventario, proveedor, producto_a, cantidad=12, precio="900")
    url = f"/api/orders/{orden.pk}/create-reception"
    # todavía no recibida
    assert inventario_client.post(url, {}, format="json").status_code == 409

    services.update_order_status(orden.pk, estado=OrdenCompra.ENVIADA, usuario=inventario)
    services.update_order_status(orden.pk, estado=OrdenCompra.RECIBIDA, usuario=inventario)

    payload = {"numero_factura": "F-77", "lineas": [
        {"producto_id": producto_a.pk, "fecha_vencimiento": "2027-09-30", "numero_lote": "AC-9"},
    ]}
    r = inventario_client.post(url, payload, format="json")
    assert r.status_code == 201
    acta = r.json()["reception"]
    assert acta["estado"] == ActaRecepcion.PENDIENTE
    assert acta["orden_compra"] == orden.pk
    assert acta["detalles"][0]["cantidad"] == 12
    assert Decimal(acta["detalles"][0]["precio_compra"]) == Decimal("900.00")

    orden.refresh_from_db()
    assert orden.estado == OrdenCompra.COMPLETADA

    assert admin_client.put(f"/api/inventory/reception/{acta['id']}/approve").status_code == 200
    producto_a.refresh_from_db()
    assert producto_a.stock_total == 12


def test_reception_from_order_without_expiration_cannot_be_approved(admin, inventario, proveedor, producto_a):
    orden = _order(inventario, proveedor, producto_a)
    services.update_order_status(orden.pk, estado=OrdenCompra.ENVIADA, usuario=inventario)
    services.update_order_status(orden.pk, estado=OrdenCompra.RECIBIDA, usuario=inventario)
    acta = services.create_reception_from_order(orden.pk, usuario=inventario)

    with pytest.raises(ValidationError):
        services.approve_reception(acta.pk, aprobador=admin)
    acta.refresh_from_db()
    assert acta.estado == ActaRecepcion.PENDIENTE


def test_reception_from_order_rejects_lines_outside_the_order(inventario_client, inventario, proveedor,
                                                             producto_a, producto_b):
    orden = _order(inventario, proveedor, producto_a)
    services.update_order_status(orden.pk, estado=OrdenCompra.ENVIADA, usuario=inventario)
    services.update_order_status(orden.pk, estado=OrdenCompra.RECIBIDA, usuario=inventario)

    payload = {"lineas": [
        {"producto_id": producto_a.pk, "fecha_vencimiento": "2027-09-30"},
        {"producto_id": producto_b.pk, "fecha_vencimiento": "2027-09-30"},
    ]}
    r = inventario_client.post(f"/api/orders/{orden.pk}/create-reception", payload, format="json")
    assert r.status_code == 400
    assert r.json()["productos"] == [producto_b.pk]

    with pytest.raises(ValidationError):
        services.create_reception_from_order(
            orden.pk, usuario=inventario, overrides={producto_b.pk: {"cantidad": 1}},
        )
    orden.refresh_from_db()
    assert orden.estado == OrdenCompra.RECIBIDA
    assert not ActaRecepcion.objects.exists()


def test_reception_from_pending_order_conflicts(inventario, proveedor, producto_a):
    orden = _order(inventario, proveedor, producto_a)
    with pytest.raises(ConflictError):
        services.create_reception_from_order(orden.pk, usuario=inventario)


def test_order_stats(inventario_client, inventario, proveedor, producto_a):
    _order(inventario, proveedor, producto_a)
    o2 = _order(inventario, proveedor, producto_a)
    services.update_order_status(o2.pk, estado=OrdenCompra.CANCELADA, usuario=inventario)
    r = inventario_client.get("/api/orders/stats")
    assert r.status_code == 200
    body = r.json()
    assert body["total"] == 2
    assert body["por_estado"][OrdenCompra.PENDIENTE] == 1
    assert body["por_estado"][OrdenCompra.CANCELADA] == 1
