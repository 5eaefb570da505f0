from django.contrib import admin

from .models import (
    ActaRecepcion, BajaInventario, Configuracion, DetalleActaRecepcion,
    DetalleOrdenCompra, DetalleVenta, HistorialCambio, Lote,
    NotificacionReabastecimiento, OrdenCompra, Producto, Proveedor,
    UnidadMedida, Usuario, Venta,
)


@admin.register(Usuario)
class UsuarioAdmin(admin.ModelAdmin):
    list_display = ("id", "nombre", "correo", "rol", "activo")
    list_filter = ("rol", "activo")
    search_fields = ("nombre", "correo")
    exclude = ("contrasena_hash",)  # se asigna con set_password


@admin.register(Producto)
class ProductoAdmin(admin.ModelAdmin):
    list_display = ("id", "nombre", "presentacion", "codigo_barras", "stock_total", "stock_minimo", "activo")
    search_fields = ("nombre", "codigo_barras", "principio_activo")
    list_filter = ("activo", "aplica_iva", "es_controlado")
    readonly_fields = ("stock_total",)  # solo lo mueven los flujos


@admin.register(Lote)
class LoteAdmin(admin.ModelAdmin):
    list_display = ("id", "producto", "numero_lote", "fecha_vencimiento", "cantidad_disponible", "estado")
    list_filter = ("estado",)
    search_fields = ("numero_lote", "producto__nombre")
    readonly_fields = ("cantidad_disponible",)


@admin.register(Proveedor)
class ProveedorAdmin(admin.ModelAdmin):
    list_display = ("id", "nombre", "nit", "telefono", "activo")
    search_fields = ("nombre", "nit")


@admin.register(UnidadMedida)
class UnidadMedidaAdmin(admin.ModelAdmin):
    list_display = ("id", "nombre", "abreviacion", "activo")


class DetalleActaInline(admin.TabularInline):
    model = DetalleActaRecepcion
    extra = 0
    can_delete = False


@admin.register(ActaRecepcion)
class ActaRecepcionAdmin(admin.ModelAdmin):
    list_display = ("id", "proveedor", "estado", "usuario_receptor", "fecha_recepcion")
    list_filter = ("estado",)
    readonly_fields = ("estado",)
    inlines = [DetalleActaInline]


@admin.register(BajaInventario)
class BajaInventarioAdmin(admin.ModelAdmin):
    list_display = ("id", "lote", "cantidad", "motivo", "estado", "fecha_solicitud")
    list_filter = ("estado", "motivo")
    readonly_fields = ("estado",)


class DetalleOrdenInline(admin.TabularInline):
    model = DetalleOrdenCompra
    extra = 0


@admin.register(OrdenCompra)
class OrdenCompraAdmin(admin.ModelAdmin):
    list_display = ("numero_orden", "proveedor", "estado", "es_automatica", "total", "fecha_orden")
    list_filter = ("estado", "es_automatica")
    search_fields = ("numero_orden",)
    readonly_fields = ("estado",)
    inlines = [DetalleOrdenInline]


class DetalleVentaInline(admin.TabularInline):
    model = DetalleVenta
    extra = 0
    can_delete = False


@admin.register(Venta)
class VentaAdmin(admin.ModelAdmin):
    list_display = ("id", "usuario", "fecha_venta", "total_a_pagar", "metodo_pago", "estado")
    list_filter = ("estado", "metodo_pago")
    readonly_fields = ("estado",)
    inlines = [DetalleVentaInline]


@admin.register(NotificacionReabastecimiento)
class NotificacionAdmin(admin.ModelAdmin):
    list_display = ("id", "producto", "tipo_notificacion", "prioridad", "fecha_creacion", "fecha_visto", "activo", "condicion_vigente")
    list_filter = ("tipo_notificacion", "activo", "condicion_vigente")


@admin.register(Configuracion)
class ConfiguracionAdmin(admin.ModelAdmin):
    list_display = ("clave", "valor", "tipo_dato")


@admin.register(HistorialCambio)
class HistorialCambioAdmin(admin.ModelAdmin):
    list_display = ("id", "usuario", "accion", "fecha_cambio")
    search_fields = ("accion",)

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
