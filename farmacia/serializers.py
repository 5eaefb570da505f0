# farmacia/serializers.py

from decimal import Decimal

from django.utils import timezone
from rest_framework import serializers

from .models import (
    ActaRecepcion, BajaInventario, Configuracion, DetalleActaRecepcion,
    DetalleOrdenCompra, DetalleVenta, HistorialCambio, Lote,
    NotificacionReabastecimiento, OrdenCompra, Producto, Proveedor,
    UnidadMedida, Usuario, Venta,
)


# ============ Usuarios / sesión ============
class UsuarioSerializer(serializers.ModelSerializer):
    class Meta:
        model = Usuario
        fields = ["id", "nombre", "correo", "rol", "activo", "fecha_creacion", "fecha_actualizacion"]
        read_only_fields = fields


class LoginSerializer(serializers.Serializer):
    correo = serializers.CharField()
    contrasena = serializers.CharField(trim_whitespace=False)


class UsuarioCreateSerializer(serializers.Serializer):
    nombre = serializers.CharField(max_length=120)
    correo = serializers.EmailField(max_length=160)
    contrasena = serializers.CharField(min_length=6, trim_whitespace=False, write_only=True)
    rol = serializers.ChoiceField(choices=Usuario.ROLES)
    activo = serializers.BooleanField(default=True)

    def validate_correo(self, value):
        return value.strip().lower()


class UsuarioUpdateSerializer(serializers.Serializer):
    nombre = serializers.CharField(max_length=120, required=False)
    correo = serializers.EmailField(max_length=160, required=False)
    contrasena = serializers.CharField(min_length=6, trim_whitespace=False, required=False, allow_blank=True)
    rol = serializers.ChoiceField(choices=Usuario.ROLES, required=False)
    activo = serializers.BooleanField(required=False)

    def validate_correo(self, value):
        return value.strip().lower()


class HistorialCambioSerializer(serializers.ModelSerializer):
    usuario_nombre = serializers.CharField(source="usuario.nombre", read_only=True)

    class Meta:
        model = HistorialCambio
        fields = ["id", "usuario", "usuario_nombre", "accion", "detalles", "fecha_cambio"]


# ============ Catálogo ============
class UnidadMedidaSerializer(serializers.ModelSerializer):
    class Meta:
        model = UnidadMedida
        fields = ["id", "nombre", "abreviacion", "activo"]
        read_only_fields = ["activo"]


class ProveedorSerializer(serializers.ModelSerializer):
    class Meta:
        model = Proveedor
        fields = ["id", "nombre", "nit", "contacto", "telefono", "correo", "direccion", "activo", "fecha_creacion"]
        read_only_fields = ["fecha_creacion"]
        # la unicidad se valida abajo con mensajes propios
        extra_kwargs = {"nombre": {"validators": []}, "nit": {"validators": []}}

    def validate_nit(self, value):
        return value or None

    def validate(self, attrs):
        qs = Proveedor.objects.all()
        if self.instance is not None:
            qs = qs.exclude(pk=self.instance.pk)
        nombre = attrs.get("nombre")
        nit = attrs.get("nit")
        if nombre and qs.filter(nombre__iexact=nombre).exists():
            raise serializers.ValidationError({"nombre": "Ya existe un proveedor con ese nombre"})
        if nit and qs.filter(nit=nit).exists():
            raise serializers.ValidationError({"nit": "Ya existe un proveedor con ese NIT"})
        return attrs


class ProveedorSimpleSerializer(serializers.ModelSerializer):
    class Meta:
        model = Proveedor
        fields = ["id", "nombre"]


class LoteSerializer(serializers.ModelSerializer):
    producto_nombre = serializers.CharField(source="producto.nombre", read_only=True)
    dias_para_vencer = serializers.SerializerMethodField()

    class Meta:
        model = Lote
        fields = [
            "id", "producto", "producto_nombre", "numero_lote", "fecha_vencimiento",
            "cantidad_inicial", "cantidad_disponible", "precio_compra", "precio_venta_lote",
            "estado", "fecha_ingreso", "dias_para_vencer",
        ]

    def get_dias_para_vencer(self, obj):
        return (obj.fecha_vencimiento - timezone.localdate()).days


class ProductoSerializer(serializers.ModelSerializer):
    unidad_nombre = serializers.CharField(source="unidad.nombre", read_only=True, default=None)
    proveedor_preferido_nombre = serializers.CharField(source="proveedor_preferido.nombre", read_only=True, default=None)

    class Meta:
        model = Producto
        fields = [
            "id", "codigo_barras", "nombre", "principio_activo", "concentracion",
            "forma_farmaceutica", "presentacion", "laboratorio", "registro_sanitario",
            "unidad", "unidad_nombre", "proveedor_preferido", "proveedor_preferido_nombre",
            "precio_venta_sugerido", "aplica_iva", "es_controlado", "requiere_refrigeracion",
            "stock_minimo", "stock_maximo", "stock_total", "activo",
            "fecha_creacion", "fecha_actualizacion",
        ]
        read_only_fields = ["stock_total", "fecha_creacion", "fecha_actualizacion"]
        extra_kwargs = {"codigo_barras": {"validators": []}}

    def validate_codigo_barras(self, value):
        value = value or None
        if value:
            qs = Producto.objects.filter(codigo_barras=value)
            if self.instance is not None:
                qs = qs.exclude(pk=self.instance.pk)
            if qs.exists():
                raise serializers.ValidationError("Ya existe un producto con ese código de barras")
        return value

    def validate_precio_venta_sugerido(self, value):
        if value < 0:
            raise serializers.ValidationError("El precio no puede ser negativo")
        return value


class ProductoDetailSerializer(ProductoSerializer):
    lotes = serializers.SerializerMethodField()

    class Meta(ProductoSerializer.Meta):
        fields = ProductoSerializer.Meta.fields + ["lotes"]

    def get_lotes(self, obj):
        lotes = obj.lotes.filter(cantidad_disponible__gt=0).order_by("fecha_vencimiento", "id")
        return LoteSerializer(lotes, many=True).data


# ============ Recepción ============
class ReceptionLineInSerializer(serializers.Serializer):
    producto_id = serializers.IntegerField(min_value=1)
    cantidad = serializers.IntegerField(min_value=1)
    fecha_vencimiento = serializers.DateField()
    precio_compra = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal("0"), default=Decimal("0"))
    numero_lote = serializers.CharField(max_length=60, required=False, allow_blank=True, default="")


class CreateReceptionSerializer(serializers.Serializer):
    proveedor_id = serializers.IntegerField(min_value=1)
    numero_factura = serializers.CharField(max_length=60, required=False, allow_blank=True, default="")
    observaciones = serializers.CharField(required=False, allow_blank=True, default="")
    lineas = ReceptionLineInSerializer(many=True, allow_empty=False)


class RejectSerializer(serializers.Serializer):
    motivo = serializers.CharField()


class ApproveBajaSerializer(serializers.Serializer):
    observaciones = serializers.CharField(required=False, allow_blank=True, default="")


class DetalleActaRecepcionSerializer(serializers.ModelSerializer):
    producto_nombre = serializers.CharField(source="producto.nombre", read_only=True)

    class Meta:
        model = DetalleActaRecepcion
        fields = ["id", "producto", "producto_nombre", "numero_lote", "fecha_vencimiento",
                  "cantidad", "precio_compra", "lote"]


class ActaRecepcionSerializer(serializers.ModelSerializer):
    proveedor_nombre = serializers.CharField(source="proveedor.nombre", read_only=True)
    usuario_receptor_nombre = serializers.CharField(source="usuario_receptor.nombre", read_only=True)
    usuario_aprobador_nombre = serializers.CharField(source="usuario_aprobador.nombre", read_only=True, default=None)
    detalles = DetalleActaRecepcionSerializer(many=True, read_only=True)

    class Meta:
        model = ActaRecepcion
        fields = [
            "id", "proveedor", "proveedor_nombre", "orden_compra", "numero_factura", "observaciones",
            "estado", "usuario_receptor", "usuario_receptor_nombre",
            "usuario_aprobador", "usuario_aprobador_nombre", "motivo_rechazo",
            "fecha_recepcion", "fecha_aprobacion", "detalles",
        ]


# ============ Bajas ============
class CreateBajaSerializer(serializers.Serializer):
    lote_id = serializers.IntegerField(min_value=1)
    cantidad = serializers.IntegerField(min_value=1)
    motivo = serializers.ChoiceField(choices=BajaInventario.MOTIVOS)
    observaciones = serializers.CharField(required=False, allow_blank=True, default="")


class BajaInventarioSerializer(serializers.ModelSerializer):
    lote_numero = serializers.CharField(source="lote.numero_lote", read_only=True)
    producto_id = serializers.IntegerField(source="lote.producto_id", read_only=True)
    producto_nombre = serializers.CharField(source="lote.producto.nombre", read_only=True)
    usuario_solicitante_nombre = serializers.CharField(source="usuario_solicitante.nombre", read_only=True)

    class Meta:
        model = BajaInventario
        fields = [
            "id", "lote", "lote_numero", "producto_id", "producto_nombre", "cantidad", "motivo",
            "observaciones", "estado", "usuario_solicitante", "usuario_solicitante_nombre",
            "usuario_aprobador", "observaciones_aprobador", "fecha_solicitud", "fecha_aprobacion",
        ]


# ============ Órdenes de compra ============
class OrderLineInSerializer(serializers.Serializer):
    producto_id = serializers.IntegerField(min_value=1)
    cantidad_solicitada = serializers.IntegerField(min_value=1)
    precio_unitario = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal("0"), default=Decimal("0"))
    notas = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")


class CreateOrderSerializer(serializers.Serializer):
    proveedor_id = serializers.IntegerField(min_value=1)
    fecha_entrega_esperada = serializers.DateField(required=False, allow_null=True)
    observaciones = serializers.CharField(required=False, allow_blank=True, default="")
    lineas = OrderLineInSerializer(many=True, allow_empty=False)


class OrderStatusSerializer(serializers.Serializer):
    estado = serializers.ChoiceField(choices=OrdenCompra.ESTADOS)
    observaciones = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class ReceptionFromOrderLineSerializer(serializers.Serializer):
    producto_id = serializers.IntegerField(min_value=1)
    fecha_vencimiento = serializers.DateField(required=False, allow_null=True)
    numero_lote = serializers.CharField(max_length=60, required=False, allow_blank=True)
    cantidad = serializers.IntegerField(min_value=1, required=False)


class CreateReceptionFromOrderSerializer(serializers.Serializer):
    numero_factura = serializers.CharField(max_length=60, required=False, allow_blank=True, default="")
    observaciones = serializers.CharField(required=False, allow_blank=True, default="")
    lineas = ReceptionFromOrderLineSerializer(many=True, required=False, default=list)


class DetalleOrdenCompraSerializer(serializers.ModelSerializer):
    producto_nombre = serializers.CharField(source="producto.nombre", read_only=True)

    class Meta:
        model = DetalleOrdenCompra
        fields = ["id", "producto", "producto_nombre", "cantidad_solicitada", "precio_unitario", "total_linea", "notas"]


class OrdenCompraSerializer(serializers.ModelSerializer):
    proveedor_nombre = serializers.CharField(source="proveedor.nombre", read_only=True)
    usuario_creador_nombre = serializers.CharField(source="usuario_creador.nombre", read_only=True)
    detalles = DetalleOrdenCompraSerializer(many=True, read_only=True)

    class Meta:
        model = OrdenCompra
        fields = [
            "id", "numero_orden", "proveedor", "proveedor_nombre", "usuario_creador", "usuario_creador_nombre",
            "estado", "es_automatica", "fecha_orden", "fecha_entrega_esperada", "fecha_recepcion",
            "observaciones", "subtotal", "impuestos", "total", "detalles",
        ]


# ============ Punto de venta ============
class SaleLineInSerializer(serializers.Serializer):
    producto_id = serializers.IntegerField(min_value=1)
    cantidad = serializers.IntegerField(min_value=1)


class CreateSaleSerializer(serializers.Serializer):
    lineas = SaleLineInSerializer(many=True, allow_empty=False)
    metodo_pago = serializers.ChoiceField(choices=Venta.METODOS_PAGO, default="efectivo")
    descuento_total = serializers.DecimalField(max_digits=14, decimal_places=2, min_value=Decimal("0"), default=Decimal("0"))


class DetalleVentaSerializer(serializers.ModelSerializer):
    producto_id = serializers.IntegerField(source="lote.producto_id", read_only=True)
    producto_nombre = serializers.CharField(source="lote.producto.nombre", read_only=True)
    numero_lote = serializers.CharField(source="lote.numero_lote", read_only=True)

    class Meta:
        model = DetalleVenta
        fields = ["id", "lote", "numero_lote", "producto_id", "producto_nombre",
                  "cantidad", "precio_venta_unitario", "total_linea"]


class VentaSerializer(serializers.ModelSerializer):
    usuario_nombre = serializers.CharField(source="usuario.nombre", read_only=True)
    detalles = DetalleVentaSerializer(many=True, read_only=True)

    class Meta:
        model = Venta
        fields = [
            "id", "usuario", "usuario_nombre", "fecha_venta", "subtotal", "descuento_total",
            "impuesto_total", "total_a_pagar", "metodo_pago", "estado", "detalles",
        ]


# ============ Notificaciones ============
class NotificacionSerializer(serializers.ModelSerializer):
    producto_nombre = serializers.CharField(source="producto.nombre", read_only=True)
    producto_presentacion = serializers.CharField(source="producto.presentacion", read_only=True)
    stock_total = serializers.IntegerField(source="producto.stock_total", read_only=True)
    stock_minimo = serializers.IntegerField(source="producto.stock_minimo", read_only=True)

    class Meta:
        model = NotificacionReabastecimiento
        fields = [
            "id", "producto", "producto_nombre", "producto_presentacion", "stock_total", "stock_minimo",
            "lote", "tipo_notificacion", "mensaje", "prioridad", "fecha_creacion", "fecha_visto", "activo",
        ]


class CreateNotificacionSerializer(serializers.Serializer):
    producto_id = serializers.IntegerField(min_value=1)
    tipo_notificacion = serializers.ChoiceField(choices=NotificacionReabastecimiento.TIPOS)
    mensaje = serializers.CharField(max_length=255)
    prioridad = serializers.ChoiceField(choices=NotificacionReabastecimiento.PRIORIDADES, default="Media")


# ============ Configuración ============
class ConfiguracionEntrySerializer(serializers.Serializer):
    valor = serializers.CharField(allow_blank=True)
    descripcion = serializers.CharField(required=False, allow_blank=True)
    tipo_dato = serializers.ChoiceField(choices=Configuracion.TIPOS, required=False)
