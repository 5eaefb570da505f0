# farmacia/views.py
# ============================================================
# Imports
# ============================================================
import logging
import math

from django.db.models import Count, F, Max, Q
from django.shortcuts import get_object_or_404
from django.utils import timezone
from django.utils.dateparse import parse_date
from rest_framework import status
from rest_framework.decorators import api_view, authentication_classes, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from . import accounts, alerts, audit, reports, services
from .authentication import clear_auth_cookie, issue_token, set_auth_cookie
from .exceptions import ValidationError
from .models import (
    ActaRecepcion, BajaInventario, Configuracion, HistorialCambio, Lote,
    NotificacionReabastecimiento, OrdenCompra, Producto, Proveedor,
    UnidadMedida, Usuario, Venta,
)
from .permissions import Capability, MethodCapability
from .serializers import (
    ActaRecepcionSerializer, ApproveBajaSerializer, BajaInventarioSerializer,
    ConfiguracionEntrySerializer, CreateBajaSerializer, CreateNotificacionSerializer,
    CreateOrderSerializer, CreateReceptionFromOrderSerializer, CreateReceptionSerializer,
    CreateSaleSerializer, HistorialCambioSerializer, LoginSerializer, LoteSerializer,
    NotificacionSerializer, OrdenCompraSerializer, OrderStatusSerializer,
    ProductoDetailSerializer, ProductoSerializer, ProveedorSerializer,
    ProveedorSimpleSerializer, RejectSerializer, UnidadMedidaSerializer,
    UsuarioCreateSerializer, UsuarioSerializer, UsuarioUpdateSerializer, VentaSerializer,
)

logger = logging.getLogger(__name__)


# ============================================================
# Helpers
# ============================================================
def _int_param(request, name, default, minimum=1, maximum=None):
    raw = request.query_params.get(name)
    if raw in (None, ""):
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"Parámetro '{name}' inválido")
    value = max(value, minimum)
    return min(value, maximum) if maximum else value


def _date_param(request, name):
    raw = request.query_params.get(name)
    if not raw:
        return None
    try:
        value = parse_date(raw[:10])
    except ValueError:
        value = None
    if value is None:
        raise ValidationError(f"Fecha '{name}' inválida (use AAAA-MM-DD)")
    return value


def paginate(request, qs, serializer_cls, key, default_limit=10):
    """{key: [...], pagination: {page, limit, total, pages}}"""
    page = _int_param(request, "page", 1)
    limit = _int_param(request, "limit", default_limit, maximum=100)
    total = qs.count()
    start = (page - 1) * limit
    items = serializer_cls(qs[start:start + limit], many=True).data
    return Response({
        key: items,
        "pagination": {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit)},
    })


def _valid(serializer_cls, request, **kwargs):
    s = serializer_cls(data=request.data, **kwargs)
    s.is_valid(raise_exception=True)
    return s.validated_data


# ============================================================
# Salud / autenticación
# ============================================================
@api_view(["GET"])
@authentication_classes([])
@permission_classes([AllowAny])
def health(request):
    return Response({"status": "OK", "timestamp": timezone.now().isoformat()})


@api_view(["POST"])
@authentication_classes([])
@permission_classes([AllowAny])
def login(request):
    data = _valid(LoginSerializer, request)
    usuario = accounts.authenticate(data["correo"], data["contrasena"])
    response = Response({"message": "Login exitoso", "user": UsuarioSerializer(usuario).data})
    return set_auth_cookie(response, issue_token(usuario))


@api_view(["POST"])
@authentication_classes([])
@permission_classes([AllowAny])
def logout(request):
    return clear_auth_cookie(Response({"message": "Logout exitoso"}))


@api_view(["GET"])
def me(request):
    return Response({"user": UsuarioSerializer(request.user).data})


# ============================================================
# Usuarios
# ============================================================
class UsersView(APIView):
    permission_classes = [MethodCapability]
    capabilities = {"GET": "users.manage", "POST": "users.manage"}

    def get(self, request):
        qs = (
            Usuario.objects
            .annotate(total_ventas=Count("ventas", distinct=True), ultima_actividad=Max("historial__fecha_cambio"))
            .order_by("-fecha_creacion", "-id")
        )
        rows = []
        for u in qs:
            data = UsuarioSerializer(u).data
            data["total_ventas"] = u.total_ventas
            data["ultima_actividad"] = u.ultima_actividad
            rows.append(data)
        return Response(rows)

    def post(self, request):
        data = _valid(UsuarioCreateSerializer, request)
        usuario = accounts.create_user(actor=request.user, **data)
        return Response(UsuarioSerializer(usuario).data, status=status.HTTP_201_CREATED)


class UserDetailView(APIView):
    permission_classes = [MethodCapability]
    capabilities = {"PUT": "users.manage", "DELETE": "users.manage"}

    def put(self, request, pk):
        data = _valid(UsuarioUpdateSerializer, request)
        usuario = accounts.update_user(pk, actor=request.user, **data)
        return Response(UsuarioSerializer(usuario).data)

    def delete(self, request, pk):
        usuario = accounts.deactivate_user(pk, actor=request.user)
        return Response({"message": "Usuario desactivado exitosamente", "user": UsuarioSerializer(usuario).data})


@api_view(["GET"])
@permission_classes([Capability("users.manage")])
def user_stats(request):
    por_rol = dict(Usuario.objects.order_by().values_list("rol").annotate(n=Count("id")))
    return Response({
        "total": Usuario.objects.count(),
        "activos": Usuario.objects.filter(activo=True).count(),
        "por_rol": {rol: por_rol.get(rol, 0) for rol, _ in Usuario.ROLES},
    })


@api_view(["GET"])
@permission_classes([Capability("users.manage")])
def user_activity(request, pk):
    get_object_or_404(Usuario, pk=pk)
    limit = _int_param(request, "limit", 20, maximum=200)
    qs = HistorialCambio.objects.filter(usuario_id=pk).select_related("usuario")[:limit]
    return Response(HistorialCambioSerializer(qs, many=True).data)


# ============================================================
# Catálogo: productos
# ============================================================
class ProductsView(APIView):
    permission_classes = [MethodCapability]
    capabilities = {"GET": "catalog.read", "POST": "catalog.write"}

    def get(self, request):
        qs = Producto.objects.select_related("unidad", "proveedor_preferido")
        activo = request.query_params.get("activo", "true")
        if activo != "all":
            qs = qs.filter(activo=activo.lower() != "false")
        q = request.query_params.get("search")
        if q:
            qs = qs.filter(Q(nombre__icontains=q) | Q(codigo_barras__icontains=q) | Q(principio_activo__icontains=q))
        return paginate(request, qs.order_by("nombre", "id"), ProductoSerializer, "products")

    def post(self, request):
        s = ProductoSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        producto = s.save()
        audit.record(request.user, f"Producto creado: {producto.nombre}", {"productoId": producto.pk})
        return Response(ProductoSerializer(producto).data, status=status.HTTP_201_CREATED)


class ProductDetailView(APIView):
    permission_classes = [MethodCapability]
    capabilities = {"GET": "catalog.read", "PUT": "catalog.write", "DELETE": "catalog.delete"}

    def get(self, request, pk):
        producto = get_object_or_404(Producto.objects.select_related("unidad", "proveedor_preferido"), pk=pk)
        return Response(ProductoDetailSerializer(producto).data)

    def put(self, request, pk):
        producto = get_object_or_404(Producto, pk=pk)
        s = ProductoSerializer(producto, data=request.data, partial=True)
        s.is_valid(raise_exception=True)
        producto = s.save()
        audit.record(request.user, f"Producto actualizado: {producto.nombre}", {
            "productoId": producto.pk, "cambios": sorted(s.validated_data),
        })
        return Response(ProductoSerializer(producto).data)

    def delete(self, request, pk):
        producto = get_object_or_404(Producto, pk=pk)
        producto.activo = False
        producto.save(update_fields=["activo", "fecha_actualizacion"])
        audit.record(request.user, f"Producto desactivado: {producto.nombre}", {"productoId": producto.pk})
        return Response({"message": "Producto desactivado exitosamente"})


@api_view(["GET"])
@permission_classes([Capability("catalog.read")])
def product_search(request, q):
    qs = (
        Producto.objects.filter(activo=True)
        .filter(Q(nombre__icontains=q) | Q(codigo_barras__iexact=q) | Q(principio_activo__icontains=q))
        .order_by("nombre")[:20]
    )
    return Response(ProductoSerializer(qs, many=True).data)


@api_view(["GET"])
@permission_classes([Capability("catalog.read")])
def product_lots(request, pk):
    get_object_or_404(Producto, pk=pk)
    qs = Lote.objects.filter(producto_id=pk).select_related("producto").order_by("fecha_vencimiento", "id")
    if request.query_params.get("disponibles") == "true":
        qs = qs.filter(cantidad_disponible__gt=0)
    return Response(LoteSerializer(qs, many=True).data)


# ============================================================
# Catálogo: proveedores y unidades
# ============================================================
class ProvidersView(APIView):
    permission_classes = [MethodCapability]
    capabilities = {"GET": "catalog.read", "POST": "catalog.write"}

    def get(self, request):
        qs = Proveedor.objects.all()
        activo = request.query_params.get("activo", "true")
        if activo != "all":
            qs = qs.filter(activo=activo.lower() != "false")
        q = request.query_params.get("search")
        if q:
            qs = qs.filter(Q(nombre__icontains=q) | Q(nit__icontains=q) | Q(contacto__icontains=q))
        qs = qs.order_by("nombre")
        if request.query_params.get("simple") == "true":
            return Response(ProveedorSimpleSerializer(qs, many=True).data)
        return paginate(request, qs, ProveedorSerializer, "providers")

    def post(self, request):
        s = ProveedorSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        proveedor = s.save()
        audit.record(request.user, f"Proveedor creado: {proveedor.nombre}", {"proveedorId": proveedor.pk})
        return Response(ProveedorSerializer(proveedor).data, status=status.HTTP_201_CREATED)


class ProviderDetailView(APIView):
    permission_classes = [MethodCapability]
    capabilities = {"GET": "catalog.read", "PUT": "catalog.write", "DELETE": "catalog.delete"}

    def get(self, request, pk):
        proveedor = get_object_or_404(Proveedor, pk=pk)
        data = ProveedorSerializer(proveedor).data
        data["ordenes_recientes"] = OrdenCompraSerializer(
            proveedor.ordenes_compra.order_by("-fecha_orden", "-id")[:5], many=True).data
        data["recepciones_recientes"] = ActaRecepcionSerializer(
            proveedor.actas_recepcion.order_by("-fecha_recepcion", "-id")[:5], many=True).data
        return Response(data)

    def put(self, request, pk):
        proveedor = get_object_or_404(Proveedor, pk=pk)
        s = ProveedorSerializer(proveedor, data=request.data, partial=True)
        s.is_valid(raise_exception=True)
        proveedor = s.save()
        audit.record(request.user, f"Proveedor actualizado: {proveedor.nombre}", {"proveedorId": proveedor.pk})
        return Response(ProveedorSerializer(proveedor).data)

    def delete(self, request, pk):
        proveedor = get_object_or_404(Proveedor, pk=pk)
        proveedor.activo = False
        proveedor.save(update_fields=["activo"])
        audit.record(request.user, f"Proveedor desactivado: {proveedor.nombre}", {"proveedorId": proveedor.pk})
        return Response({"message": "Proveedor desactivado exitosamente"})


@api_view(["GET"])
@permission_classes([Capability("providers.stats")])
def provider_stats(request):
    activos = Proveedor.objects.filter(activo=True)
    top = (
        activos.annotate(total_ordenes=Count("ordenes_compra"))
        .filter(total_ordenes__gt=0)
        .order_by("-total_ordenes", "nombre")[:5]
    )
    return Response({
        "total": Proveedor.objects.count(),
        "activos": activos.count(),
        "inactivos": Proveedor.objects.filter(activo=False).count(),
        "con_ordenes_pendientes": activos.filter(
            ordenes_compra__estado__in=[OrdenCompra.PENDIENTE, OrdenCompra.ENVIADA]).distinct().count(),
        "top_proveedores": [{"id": p.pk, "nombre": p.nombre, "total_ordenes": p.total_ordenes} for p in top],
    })


class UnitsView(APIView):
    permission_classes = [MethodCapability]
    capabilities = {"GET": "catalog.read", "POST": "catalog.write"}

    def get(self, request):
        return Response(UnidadMedidaSerializer(UnidadMedida.objects.filter(activo=True), many=True).data)

    def post(self, request):
        s = UnidadMedidaSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        unidad = s.save()
        audit.record(request.user, f"Unidad de medida creada: {unidad.nombre}", {"unidadId": unidad.pk})
        return Response(UnidadMedidaSerializer(unidad).data, status=status.HTTP_201_CREATED)


# ============================================================
# Inventario: recepción
# ============================================================
def _reception_qs():
    return (
        ActaRecepcion.objects
        .select_related("proveedor", "usuario_receptor", "usuario_aprobador")
        .prefetch_related("detalles__producto")
    )


class ReceptionsView(APIView):
    permission_classes = [MethodCapability]
    capabilities = {"GET": "reception.read", "POST": "reception.create"}

    def get(self, request):
        qs = _reception_qs()
        if request.query_params.get("estado"):
            qs = qs.filter(estado=request.query_params["estado"])
        if request.query_params.get("proveedor"):
            qs = qs.filter(proveedor_id=_int_param(request, "proveedor", None))
        return paginate(request, qs.order_by("-fecha_recepcion", "-id"), ActaRecepcionSerializer, "receptions")

    def post(self, request):
        data = _valid(CreateReceptionSerializer, request)
        acta = services.create_reception(
            proveedor_id=data["proveedor_id"],
            usuario=request.user,
            lineas=[services.ReceptionLine(**ln) for ln in data["lineas"]],
            numero_factura=data["numero_factura"],
            observaciones=data["observaciones"],
        )
        return Response(
            {"message": "Recepción registrada, pendiente de aprobación",
             "reception": ActaRecepcionSerializer(_reception_qs().get(pk=acta.pk)).data},
            status=status.HTTP_201_CREATED,
        )


@api_view(["GET"])
@permission_classes([Capability("reception.read")])
def reception_detail(request, pk):
    return Response(ActaRecepcionSerializer(get_object_or_404(_reception_qs(), pk=pk)).data)


@api_view(["GET"])
@permission_classes([Capability("reception.pending")])
def reception_pending(request):
    return Response(ActaRecepcionSerializer(services.pending_receptions(), many=True).data)


@api_view(["PUT"])
@permission_classes([Capability("reception.approve")])
def reception_approve(request, pk):
    acta = services.approve_reception(pk, aprobador=request.user)
    return Response({
        "message": "Recepción aprobada e inventario actualizado",
        "reception": ActaRecepcionSerializer(_reception_qs().get(pk=acta.pk)).data,
    })


@api_view(["PUT"])
@permission_classes([Capability("reception.reject")])
def reception_reject(request, pk):
    data = _valid(RejectSerializer, request)
    acta = services.reject_reception(pk, aprobador=request.user, motivo=data["motivo"])
    return Response({
        "message": "Recepción rechazada",
        "reception": ActaRecepcionSerializer(_reception_qs().get(pk=acta.pk)).data,
    })


# ============================================================
# Inventario: bajas
# ============================================================
def _baja_qs():
    return BajaInventario.objects.select_related("lote__producto", "usuario_solicitante", "usuario_aprobador")


class BajasView(APIView):
    permission_classes = [MethodCapability]
    capabilities = {"GET": "baja.read", "POST": "baja.create"}

    def get(self, request):
        qs = _baja_qs()
        if request.query_params.get("estado"):
            qs = qs.filter(estado=request.query_params["estado"])
        return paginate(request, qs.order_by("-fecha_solicitud", "-id"), BajaInventarioSerializer, "bajas")

    def post(self, request):
        data = _valid(CreateBajaSerializer, request)
        baja = services.create_baja(usuario=request.user, **data)
        return Response(BajaInventarioSerializer(_baja_qs().get(pk=baja.pk)).data, status=status.HTTP_201_CREATED)


@api_view(["GET"])
@permission_classes([Capability("baja.read")])
def baja_detail(request, pk):
    return Response(BajaInventarioSerializer(get_object_or_404(_baja_qs(), pk=pk)).data)


@api_view(["GET"])
@permission_classes([Capability("baja.pending")])
def baja_pending(request):
    return Response(BajaInventarioSerializer(services.pending_bajas(), many=True).data)


@api_view(["PUT"])
@permission_classes([Capability("baja.approve")])
def baja_approve(request, pk):
    data = _valid(ApproveBajaSerializer, request)
    baja = services.approve_baja(pk, aprobador=request.user, observaciones=data["observaciones"])
    return Response({"message": "Baja aprobada", "baja": BajaInventarioSerializer(_baja_qs().get(pk=baja.pk)).data})


@api_view(["PUT"])
@permission_classes([Capability("baja.reject")])
def baja_reject(request, pk):
    data = _valid(RejectSerializer, request)
    baja = services.reject_baja(pk, aprobador=request.user, motivo=data["motivo"])
    return Response({"message": "Baja rechazada", "baja": BajaInventarioSerializer(_baja_qs().get(pk=baja.pk)).data})


# ============================================================
# Inventario: alertas
# ============================================================
@api_view(["GET"])
@permission_classes([Capability("inventory.alerts")])
def expiring_lots(request):
    alerts.sync_stock_alerts()
    lots = alerts.categorize_lots()
    return Response({
        "expired": LoteSerializer(lots.expired, many=True).data,
        "critical": LoteSerializer(lots.critical, many=True).data,
        "warning": LoteSerializer(lots.warning, many=True).data,
    })


@api_view(["GET"])
@permission_classes([Capability("inventory.alerts")])
def low_stock(request):
    alerts.sync_stock_alerts()
    productos = alerts.low_stock_products().prefetch_related("lotes")
    return Response(ProductoDetailSerializer(productos, many=True).data)


# ============================================================
# Órdenes de compra
# ============================================================
def _order_qs():
    return OrdenCompra.objects.select_related("proveedor", "usuario_creador").prefetch_related("detalles__producto")


class OrdersView(APIView):
    permission_classes = [MethodCapability]
    capabilities = {"GET": "orders.read", "POST": "orders.create"}

    def get(self, request):
        qs = _order_qs()
        if request.query_params.get("estado"):
            qs = qs.filter(estado=request.query_params["estado"])
        if request.query_params.get("proveedor"):
            qs = qs.filter(proveedor_id=_int_param(request, "proveedor", None))
        return paginate(request, qs.order_by("-fecha_orden", "-id"), OrdenCompraSerializer, "orders")

    def post(self, request):
        data = _valid(CreateOrderSerializer, request)
        orden = services.create_order(
            proveedor_id=data["proveedor_id"],
            usuario=request.user,
            lineas=[services.OrderLine(**ln) for ln in data["lineas"]],
            fecha_entrega_esperada=data.get("fecha_entrega_esperada"),
            observaciones=data["observaciones"],
        )
        return Response(OrdenCompraSerializer(_order_qs().get(pk=orden.pk)).data, status=status.HTTP_201_CREATED)


@api_view(["GET"])
@permission_classes([Capability("orders.read")])
def order_detail(request, pk):
    return Response(OrdenCompraSerializer(get_object_or_404(_order_qs(), pk=pk)).data)


@api_view(["GET"])
@permission_classes([Capability("orders.stats")])
def order_stats(request):
    counts = dict(OrdenCompra.objects.order_by().values_list("estado").annotate(n=Count("id")))
    return Response({
        "total": sum(counts.values()),
        "por_estado": {estado: counts.get(estado, 0) for estado, _ in OrdenCompra.ESTADOS},
        "automaticas": OrdenCompra.objects.filter(es_automatica=True).count(),
    })


@api_view(["POST"])
@permission_classes([Capability("orders.auto_generate")])
def order_auto_generate(request):
    result = services.generate_auto_orders(usuario=request.user)
    if not result.orders and not result.unresolved:
        message = "No hay productos con stock bajo"
    else:
        message = f"Se generaron {len(result.orders)} órdenes automáticas"
    orders = _order_qs().filter(pk__in=[o.pk for o in result.orders]).order_by("id")
    return Response({
        "message": message,
        "orders": OrdenCompraSerializer(orders, many=True).data,
        "unresolved": result.unresolved,
    }, status=status.HTTP_201_CREATED if result.orders else status.HTTP_200_OK)


@api_view(["PUT"])
@permission_classes([Capability("orders.update_status")])
def order_status(request, pk):
    data = _valid(OrderStatusSerializer, request)
    orden = services.update_order_status(pk, estado=data["estado"], usuario=request.user,
                                         observaciones=data.get("observaciones"))
    return Response(OrdenCompraSerializer(_order_qs().get(pk=orden.pk)).data)


@api_view(["POST"])
@permission_classes([Capability("orders.create_reception")])
def order_create_reception(request, pk):
    data = _valid(CreateReceptionFromOrderSerializer, request)
    overrides = {ln.pop("producto_id"): ln for ln in data["lineas"]}
    acta = services.create_reception_from_order(
        pk, usuario=request.user,
        numero_factura=data["numero_factura"],
        observaciones=data["observaciones"],
        overrides=overrides,
    )
    return Response({
        "message": "Acta de recepción creada desde la orden",
        "reception": ActaRecepcionSerializer(_reception_qs().get(pk=acta.pk)).data,
    }, status=status.HTTP_201_CREATED)


# ============================================================
# Punto de venta
# ============================================================
def _sale_qs():
    return Venta.objects.select_related("usuario").prefetch_related("detalles__lote__producto")


class SalesView(APIView):
    permission_classes = [MethodCapability]
    capabilities = {"GET": "sales.read", "POST": "sales.create"}

    def get(self, request):
        qs = _sale_qs()
        desde = _date_param(request, "startDate")
        hasta = _date_param(request, "endDate")
        if desde:
            qs = qs.filter(fecha_venta__date__gte=desde)
        if hasta:
            qs = qs.filter(fecha_venta__date__lte=hasta)
        if request.query_params.get("estado"):
            qs = qs.filter(estado=request.query_params["estado"])
        return paginate(request, qs.order_by("-fecha_venta", "-id"), VentaSerializer, "sales")

    def post(self, request):
        data = _valid(CreateSaleSerializer, request)
        venta = services.create_sale(
            usuario=request.user,
            lineas=[services.SaleLine(**ln) for ln in data["lineas"]],
            metodo_pago=data["metodo_pago"],
            descuento_total=data["descuento_total"],
        )
        return Response(VentaSerializer(_sale_qs().get(pk=venta.pk)).data, status=status.HTTP_201_CREATED)


@api_view(["GET"])
@permission_classes([Capability("sales.read")])
def sale_detail(request, pk):
    return Response(VentaSerializer(get_object_or_404(_sale_qs(), pk=pk)).data)


@api_view(["POST"])
@permission_classes([Capability("sales.cancel")])
def sale_cancel(request, pk):
    motivo = request.data.get("motivo") if isinstance(request.data, dict) else None
    venta = services.cancel_sale(pk, usuario=request.user, motivo=motivo or "Cancelación manual")
    return Response({"message": "Venta cancelada", "sale": VentaSerializer(_sale_qs().get(pk=venta.pk)).data})


# ============================================================
# Reportes
# ============================================================
@api_view(["GET"])
@permission_classes([Capability("reports.read")])
def report_dashboard(request):
    alerts.sync_stock_alerts()
    return Response(reports.dashboard())


@api_view(["GET"])
@permission_classes([Capability("reports.read")])
def report_sales(request):
    start, end = _date_param(request, "startDate"), _date_param(request, "endDate")
    if start and end and start > end:
        raise ValidationError("La fecha inicial no puede ser posterior a la final")
    return Response(reports.sales_report(start, end))


@api_view(["GET"])
@permission_classes([Capability("reports.read")])
def report_inventory(request):
    return Response(reports.inventory_report())


@api_view(["GET"])
@permission_classes([Capability("reports.read")])
def report_expirations(request):
    return Response(reports.expiration_report())


# ============================================================
# Configuración
# ============================================================
class SettingsView(APIView):
    permission_classes = [MethodCapability]
    capabilities = {"GET": "settings.read", "PUT": "settings.write"}

    def get(self, request):
        return Response({
            c.clave: {"valor": c.valor, "descripcion": c.descripcion, "tipo_dato": c.tipo_dato}
            for c in Configuracion.objects.order_by("clave")
        })

    def put(self, request):
        if not isinstance(request.data, dict):
            raise ValidationError("Se esperaba un objeto {clave: {valor}}")
        entries = {}
        for clave, raw in request.data.items():
            # acepta {clave: valor} o {clave: {valor, descripcion, tipo_dato}}
            payload = raw if isinstance(raw, dict) else {"valor": raw}
            s = ConfiguracionEntrySerializer(data=payload)
            if not s.is_valid():
                raise ValidationError(f"Valor inválido para '{clave}'", errors=s.errors)
            entries[str(clave)] = s.validated_data
        accounts.update_settings(actor=request.user, entries=entries)
        return Response({"message": "Configuración actualizada exitosamente"})


# ============================================================
# Notificaciones
# ============================================================
class NotificationsView(APIView):
    permission_classes = [MethodCapability]
    capabilities = {"GET": "notifications.read", "POST": "notifications.create"}

    def get(self, request):
        alerts.sync_stock_alerts()
        qs = NotificacionReabastecimiento.objects.filter(activo=True).select_related("producto")
        if request.query_params.get("unread") == "true":
            qs = qs.filter(fecha_visto__isnull=True)
        # no leídas primero
        qs = qs.order_by(F("fecha_visto").asc(nulls_first=True), "-fecha_creacion", "-id")
        return paginate(request, qs, NotificacionSerializer, "notifications", default_limit=20)

    def post(self, request):
        data = _valid(CreateNotificacionSerializer, request)
        producto = get_object_or_404(Producto, pk=data.pop("producto_id"))
        notif = NotificacionReabastecimiento.objects.create(producto=producto, **data)
        return Response(NotificacionSerializer(notif).data, status=status.HTTP_201_CREATED)


@api_view(["GET"])
@permission_classes([Capability("notifications.read")])
def notification_count(request):
    alerts.sync_stock_alerts()
    unread = NotificacionReabastecimiento.objects.filter(activo=True, fecha_visto__isnull=True).count()
    return Response({"unread_count": unread})


@api_view(["PUT"])
@permission_classes([Capability("notifications.update")])
def notification_read(request, pk):
    notif = get_object_or_404(NotificacionReabastecimiento.objects.select_related("producto"), pk=pk)
    if notif.fecha_visto is None:
        notif.fecha_visto = timezone.now()
        notif.save(update_fields=["fecha_visto"])
    return Response(NotificacionSerializer(notif).data)


@api_view(["PUT"])
@permission_classes([Capability("notifications.update")])
def notification_read_all(request):
    n = NotificacionReabastecimiento.objects.filter(activo=True, fecha_visto__isnull=True).update(fecha_visto=timezone.now())
    return Response({"message": "Todas las notificaciones marcadas como leídas", "updated": n})


@api_view(["DELETE"])
@permission_classes([Capability("notifications.update")])
def notification_dismiss(request, pk):
    notif = get_object_or_404(NotificacionReabastecimiento, pk=pk)
    notif.activo = False
    notif.save(update_fields=["activo"])
    return Response({"message": "Notificación descartada"})
