from datetime import date, timedelta
from decimal import Decimal

import pytest
from django.conf import settings
from rest_framework.test import APIClient

from farmacia.authentication import issue_token
from farmacia.models import Lote, Producto, Proveedor, Usuario
from farmacia.services import sync_stock_total


def make_user(correo, rol, nombre=None, contrasena="secreto123", activo=True):
    u = Usuario(nombre=nombre or correo.split("@")[0], correo=correo, rol=rol, activo=activo)
    u.set_password(contrasena)
    u.save()
    return u


def client_for(usuario):
    c = APIClient()
    c.cookies[settings.AUTH_COOKIE_NAME] = issue_token(usuario)
    return c


def make_lot(producto, cantidad, vence, numero=None, precio_compra="1000.00", precio_venta="1500.00"):
    lote = Lote.objects.create(
        producto=producto,
        numero_lote=numero or f"L-{producto.pk}-{vence.isoformat()}",
        fecha_vencimiento=vence,
        cantidad_inicial=cantidad,
        cantidad_disponible=cantidad,
        precio_compra=Decimal(precio_compra),
        precio_venta_lote=Decimal(precio_venta),
    )
    sync_stock_total([producto.pk])
    return lote


@pytest.fixture
def admin(db):
    return make_user("admin@farmacia.com", Usuario.ADMINISTRADOR, "Admin")


@pytest.fixture
def cajero(db):
    return make_user("cajero@farmacia.com", Usuario.CAJERO, "Cajero")


@pytest.fixture
def inventario(db):
    return make_user("inventario@farmacia.com", Usuario.INVENTARIO, "Inventario")


@pytest.fixture
def anon_client():
    return APIClient()


@pytest.fixture
def admin_client(admin):
    return client_for(admin)


@pytest.fixture
def cajero_client(cajero):
    return client_for(cajero)


@pytest.fixture
def inventario_client(inventario):
    return client_for(inventario)


@pytest.fixture
def proveedor(db):
    return Proveedor.objects.create(nombre="Farmacéutica Nacional S.A.", nit="900123456-1")


@pytest.fixture
def producto_a(db):
    return Producto.objects.create(
        nombre="Acetaminofén 500mg", codigo_barras="7702132001234",
        precio_venta_sugerido=Decimal("3500.00"), stock_minimo=50,
    )


@pytest.fixture
def producto_b(db):
    return Producto.objects.create(
        nombre="Ibuprofeno 400mg", codigo_barras="7702132001235",
        precio_venta_sugerido=Decimal("4200.00"), stock_minimo=40, aplica_iva=True,
    )


@pytest.fixture
def future():
    """Fecha de vencimiento lejana, fuera de toda ventana de alerta."""
    return date.today() + timedelta(days=800)
