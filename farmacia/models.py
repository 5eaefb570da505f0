from decimal import Decimal

from django.contrib.auth.hashers import check_password, make_password
from django.db import models
from django.utils import timezone


# ============================================================
# Usuarios y auditoría
# ============================================================
class Usuario(models.Model):
    ADMINISTRADOR = "administrador"
    CAJERO = "cajero"
    INVENTARIO = "inventario"
    ROLES = [
        (ADMINISTRADOR, "Administrador"),
        (CAJERO, "Cajero"),
        (INVENTARIO, "Inventario"),
    ]

    nombre = models.CharField(max_length=120)
    correo = models.EmailField(max_length=160, unique=True)  # siempre en minúsculas
    contrasena_hash = models.CharField(max_length=255)
    rol = models.CharField(max_length=20, choices=ROLES)
    activo = models.BooleanField(default=True)
    fecha_creacion = models.DateTimeField(auto_now_add=True)
    fecha_actualizacion = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "usuario"
        ordering = ["nombre"]
        indexes = [
            models.Index(fields=["rol"], name="idx_usuario_rol"),
            models.Index(fields=["activo"], name="idx_usuario_activo"),
        ]

    def __str__(self):
        return f"{self.nombre} <{self.correo}>"

    # DRF consulta estos atributos sobre request.user
    @property
    def is_authenticated(self):
        return True

    @property
    def is_anonymous(self):
        return False

    def set_password(self, raw_password: str):
        self.contrasena_hash = make_password(raw_password)

    def check_password(self, raw_password: str) -> bool:
        return check_password(raw_password, self.contrasena_hash)

    def save(self, *args, **kwargs):
        if self.correo:
            self.correo = self.correo.strip().lower()
        super().save(*args, **kwargs)


class HistorialCambio(models.Model):
    """Bitácora de solo-inserción. Nunca se actualiza ni se borra."""
    usuario = models.ForeignKey(Usuario, on_delete=models.PROTECT, related_name="historial")
    accion = models.CharField(max_length=255)
    detalles = models.JSONField(default=dict, blank=True)
    fecha_cambio = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "historial_cambio"
        ordering = ["-fecha_cambio", "-id"]
        indexes = [
            models.Index(fields=["usuario", "fecha_cambio"], name="idx_historial_usuario_fecha"),
        ]

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise ValueError("HistorialCambio es de solo inserción")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("HistorialCambio es de solo inserción")


class Configuracion(models.Model):
    TIPOS = [("texto", "texto"), ("numero", "numero"), ("booleano", "booleano")]

    clave = models.CharField(max_length=100, unique=True)
    valor = models.TextField(blank=True, default="")
    descripcion = models.CharField(max_length=255, blank=True, default="")
    tipo_dato = models.CharField(max_length=20, choices=TIPOS, default="texto")

    class Meta:
        db_table = "configuracion"
        ordering = ["clave"]

    def __str__(self):
        return f"{self.clave}={self.valor}"


# ============================================================
# Catálogo
# ============================================================
class UnidadMedida(models.Model):
    nombre = models.CharField(max_length=60, unique=True)
    abreviacion = models.CharField(max_length=10)
    activo = models.BooleanField(default=True)

    class Meta:
        db_table = "unidad_medida"
        ordering = ["nombre"]

    def __str__(self):
        return self.nombre


class Proveedor(models.Model):
    nombre = models.CharField(max_length=200, unique=True)
    nit = models.CharField(max_length=30, unique=True, null=True, blank=True)
    contacto = models.CharField(max_length=120, null=True, blank=True)
    telefono = models.CharField(max_length=40, null=True, blank=True)
    correo = models.CharField(max_length=160, null=True, blank=True)
    direccion = models.CharField(max_length=255, null=True, blank=True)
    activo = models.BooleanField(default=True)
    fecha_creacion = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "proveedor"
        ordering = ["nombre"]
        indexes = [models.Index(fields=["activo"], name="idx_proveedor_activo")]

    def __str__(self):
        return self.nombre


class Producto(models.Model):
    codigo_barras = models.CharField(max_length=50, unique=True, null=True, blank=True)
    nombre = models.CharField(max_length=200)
    principio_activo = models.CharField(max_length=200, blank=True, default="")
    concentracion = models.CharField(max_length=60, blank=True, default="")
    forma_farmaceutica = models.CharField(max_length=60, blank=True, default="")
    presentacion = models.CharField(max_length=120, blank=True, default="")
    laboratorio = models.CharField(max_length=120, blank=True, default="")
    registro_sanitario = models.CharField(max_length=60, blank=True, default="")

    unidad = models.ForeignKey(UnidadMedida, on_delete=models.SET_NULL, null=True, blank=True,
                               related_name="productos")
    proveedor_preferido = models.ForeignKey(Proveedor, on_delete=models.SET_NULL, null=True, blank=True,
                                            related_name="productos_preferidos")

    precio_venta_sugerido = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    aplica_iva = models.BooleanField(default=False)
    es_controlado = models.BooleanField(default=False)
    requiere_refrigeracion = models.BooleanField(default=False)

    stock_minimo = models.PositiveIntegerField(default=0)
    stock_maximo = models.PositiveIntegerField(default=0)  # 0 = sin tope definido
    stock_total = models.IntegerField(default=0)  # Σ lotes.cantidad_disponible

    activo = models.BooleanField(default=True)
    fecha_creacion = models.DateTimeField(auto_now_add=True)
    fecha_actualizacion = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "producto"
        ordering = ["nombre"]
        indexes = [
            models.Index(fields=["activo"], name="idx_producto_activo"),
            models.Index(fields=["nombre"], name="idx_producto_nombre"),
        ]
        constraints = [
            models.CheckConstraint(condition=models.Q(stock_total__gte=0), name="ck_producto_stock_nonnegative"),
        ]

    def __str__(self):
        return f"{self.nombre} {self.presentacion}".strip()


class Lote(models.Model):
    ACTIVO = "Activo"
    AGOTADO = "Agotado"
    VENCIDO = "Vencido"
    ESTADOS = [(ACTIVO, ACTIVO), (AGOTADO, AGOTADO), (VENCIDO, VENCIDO)]

    producto = models.ForeignKey(Producto, on_delete=models.PROTECT, related_name="lotes")
    numero_lote = models.CharField(max_length=60)
    fecha_vencimiento = models.DateField()
    cantidad_inicial = models.PositiveIntegerField(default=0)
    cantidad_disponible = models.IntegerField(default=0)
    precio_compra = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    precio_venta_lote = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    estado = models.CharField(max_length=20, choices=ESTADOS, default=ACTIVO)
    fecha_ingreso = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "lote"
        ordering = ["fecha_vencimiento", "id"]
        indexes = [
            models.Index(fields=["producto", "fecha_vencimiento"], name="idx_lote_producto_venc"),
        ]
        constraints = [
            models.CheckConstraint(condition=models.Q(cantidad_disponible__gte=0), name="ck_lote_qty_nonnegative"),
        ]

    def __str__(self):
        return f"{self.numero_lote} ({self.producto_id}) vence {self.fecha_vencimiento}"


# ============================================================
# Recepción (acta) y bajas
# ============================================================
class ActaRecepcion(models.Model):
    PENDIENTE = "Pendiente"
    APROBADA = "Aprobada"
    RECHAZADA = "Rechazada"
    COMPLETADA = "Completada"
    ESTADOS = [(PENDIENTE, PENDIENTE), (APROBADA, APROBADA), (RECHAZADA, RECHAZADA), (COMPLETADA, COMPLETADA)]

    proveedor = models.ForeignKey(Proveedor, on_delete=models.PROTECT, related_name="actas_recepcion")
    orden_compra = models.ForeignKey("OrdenCompra", on_delete=models.SET_NULL, null=True, blank=True,
                                     related_name="actas_recepcion")
    usuario_receptor = models.ForeignKey(Usuario, on_delete=models.PROTECT, related_name="recepciones")
    numero_factura = models.CharField(max_length=60, blank=True, default="")
    observaciones = models.TextField(blank=True, default="")
    estado = models.CharField(max_length=20, choices=ESTADOS, default=PENDIENTE)

    usuario_aprobador = models.ForeignKey(Usuario, on_delete=models.PROTECT, null=True, blank=True,
                                          related_name="recepciones_revisadas")
    motivo_rechazo = models.TextField(blank=True, default="")
    fecha_aprobacion = models.DateTimeField(null=True, blank=True)
    fecha_recepcion = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "acta_recepcion"
        ordering = ["-fecha_recepcion", "-id"]
        indexes = [
            models.Index(fields=["estado", "fecha_recepcion"], name="idx_acta_estado_fecha"),
        ]

    def __str__(self):
        return f"Acta #{self.pk} ({self.estado})"


class DetalleActaRecepcion(models.Model):
    acta = models.ForeignKey(ActaRecepcion, on_delete=models.CASCADE, related_name="detalles")
    producto = models.ForeignKey(Producto, on_delete=models.PROTECT, related_name="detalles_recepcion")
    numero_lote = models.CharField(max_length=60, blank=True, default="")
    fecha_vencimiento = models.DateField(null=True, blank=True)  # requerida al aprobar
    cantidad = models.PositiveIntegerField()
    precio_compra = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    lote = models.ForeignKey(Lote, on_delete=models.SET_NULL, null=True, blank=True, related_name="detalles_recepcion")

    class Meta:
        db_table = "detalle_acta_recepcion"
        ordering = ["id"]
        constraints = [
            models.CheckConstraint(condition=models.Q(cantidad__gt=0), name="ck_detalle_acta_qty_gt_0"),
        ]


class BajaInventario(models.Model):
    PENDIENTE = "Pendiente"
    APROBADA = "Aprobada"
    RECHAZADA = "Rechazada"
    ESTADOS = [(PENDIENTE, PENDIENTE), (APROBADA, APROBADA), (RECHAZADA, RECHAZADA)]

    MOTIVOS = [
        ("vencimiento", "Vencimiento"),
        ("deterioro", "Deterioro/Daño"),
        ("error_ingreso", "Error de ingreso"),
        ("devolucion_proveedor", "Devolución a proveedor"),
        ("retiro_mercado", "Retiro del mercado"),
        ("otro", "Otro"),
    ]

    lote = models.ForeignKey(Lote, on_delete=models.PROTECT, related_name="bajas")
    cantidad = models.PositiveIntegerField()
    motivo = models.CharField(max_length=30, choices=MOTIVOS)
    observaciones = models.TextField(blank=True, default="")
    usuario_solicitante = models.ForeignKey(Usuario, on_delete=models.PROTECT, related_name="bajas_solicitadas")
    estado = models.CharField(max_length=20, choices=ESTADOS, default=PENDIENTE)

    usuario_aprobador = models.ForeignKey(Usuario, on_delete=models.PROTECT, null=True, blank=True,
                                          related_name="bajas_revisadas")
    observaciones_aprobador = models.TextField(blank=True, default="")
    fecha_solicitud = models.DateTimeField(default=timezone.now)
    fecha_aprobacion = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "baja_inventario"
        ordering = ["-fecha_solicitud", "-id"]
        indexes = [
            models.Index(fields=["estado", "fecha_solicitud"], name="idx_baja_estado_fecha"),
        ]
        constraints = [
            models.CheckConstraint(condition=models.Q(cantidad__gt=0), name="ck_baja_qty_gt_0"),
        ]

    def __str__(self):
        return f"Baja #{self.pk} ({self.estado})"


# ============================================================
# Órdenes de compra
# ============================================================
class OrdenCompra(models.Model):
    PENDIENTE = "Pendiente"
    ENVIADA = "Enviada"
    RECIBIDA = "Recibida"
    COMPLETADA = "Completada"
    CANCELADA = "Cancelada"
    ESTADOS = [
        (PENDIENTE, PENDIENTE), (ENVIADA, ENVIADA), (RECIBIDA, RECIBIDA),
        (COMPLETADA, COMPLETADA), (CANCELADA, CANCELADA),
    ]

    numero_orden = models.CharField(max_length=30, unique=True)
    proveedor = models.ForeignKey(Proveedor, on_delete=models.PROTECT, related_name="ordenes_compra")
    usuario_creador = models.ForeignKey(Usuario, on_delete=models.PROTECT, related_name="ordenes_creadas")
    estado = models.CharField(max_length=20, choices=ESTADOS, default=PENDIENTE)
    es_automatica = models.BooleanField(default=False)

    fecha_orden = models.DateTimeField(default=timezone.now)
    fecha_entrega_esperada = models.DateField(null=True, blank=True)
    fecha_recepcion = models.DateTimeField(null=True, blank=True)
    observaciones = models.TextField(blank=True, default="")

    subtotal = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    impuestos = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    total = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))

    class Meta:
        db_table = "orden_compra"
        ordering = ["-fecha_orden", "-id"]
        indexes = [
            models.Index(fields=["estado"], name="idx_orden_estado"),
            models.Index(fields=["proveedor"], name="idx_orden_proveedor"),
        ]

    def __str__(self):
        return self.numero_orden


class DetalleOrdenCompra(models.Model):
    orden = models.ForeignKey(OrdenCompra, on_delete=models.CASCADE, related_name="detalles")
    producto = models.ForeignKey(Producto, on_delete=models.PROTECT, related_name="detalles_orden")
    cantidad_solicitada = models.PositiveIntegerField()
    precio_unitario = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    total_linea = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    notas = models.CharField(max_length=255, blank=True, default="")

    class Meta:
        db_table = "detalle_orden_compra"
        ordering = ["id"]
        constraints = [
            models.CheckConstraint(condition=models.Q(cantidad_solicitada__gt=0), name="ck_detalle_orden_qty_gt_0"),
        ]


# ============================================================
# Punto de venta
# ============================================================
class Venta(models.Model):
    COMPLETADA = "Completada"
    CANCELADA = "Cancelada"
    ESTADOS = [(COMPLETADA, COMPLETADA), (CANCELADA, CANCELADA)]

    METODOS_PAGO = [("efectivo", "Efectivo"), ("tarjeta", "Tarjeta"), ("transferencia", "Transferencia")]

    usuario = models.ForeignKey(Usuario, on_delete=models.PROTECT, related_name="ventas")
    fecha_venta = models.DateTimeField(default=timezone.now)
    subtotal = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    descuento_total = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    impuesto_total = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    total_a_pagar = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    metodo_pago = models.CharField(max_length=20, choices=METODOS_PAGO, default="efectivo")
    estado = models.CharField(max_length=20, choices=ESTADOS, default=COMPLETADA)

    class Meta:
        db_table = "venta"
        ordering = ["-fecha_venta", "-id"]
        indexes = [
            models.Index(fields=["fecha_venta"], name="idx_venta_fecha"),
            models.Index(fields=["usuario"], name="idx_venta_usuario"),
        ]

    def __str__(self):
        return f"Venta #{self.pk} ({self.estado})"


class DetalleVenta(models.Model):
    venta = models.ForeignKey(Venta, on_delete=models.CASCADE, related_name="detalles")
    lote = models.ForeignKey(Lote, on_delete=models.PROTECT, related_name="detalles_venta")
    cantidad = models.PositiveIntegerField()
    precio_venta_unitario = models.DecimalField(max_digits=12, decimal_places=2)
    total_linea = models.DecimalField(max_digits=14, decimal_places=2)

    class Meta:
        db_table = "detalle_venta"
        ordering = ["id"]
        constraints = [
            models.CheckConstraint(condition=models.Q(cantidad__gt=0), name="ck_detalle_venta_qty_gt_0"),
        ]


# ============================================================
# Notificaciones
# ============================================================
class NotificacionReabastecimiento(models.Model):
    STOCK_BAJO = "StockBajo"
    VENCIDO = "Vencido"
    VENCIMIENTO_CRITICO = "VencimientoCritico"
    VENCIMIENTO_PROXIMO = "VencimientoProximo"
    TIPOS = [
        (STOCK_BAJO, STOCK_BAJO), (VENCIDO, VENCIDO),
        (VENCIMIENTO_CRITICO, VENCIMIENTO_CRITICO), (VENCIMIENTO_PROXIMO, VENCIMIENTO_PROXIMO),
    ]
    PRIORIDADES = [("Alta", "Alta"), ("Media", "Media"), ("Baja", "Baja")]

    producto = models.ForeignKey(Producto, on_delete=models.CASCADE, related_name="notificaciones")
    lote = models.ForeignKey(Lote, on_delete=models.CASCADE, null=True, blank=True, related_name="notificaciones")
    tipo_notificacion = models.CharField(max_length=30, choices=TIPOS)
    mensaje = models.CharField(max_length=255)
    prioridad = models.CharField(max_length=10, choices=PRIORIDADES, default="Media")
    fecha_creacion = models.DateTimeField(default=timezone.now)
    fecha_visto = models.DateTimeField(null=True, blank=True)
    activo = models.BooleanField(default=True)
    # generada por el sistema y la condición aún se cumple; se apaga cuando deja de cumplirse
    condicion_vigente = models.BooleanField(default=False)

    class Meta:
        db_table = "notificacion_reabastecimiento"
        ordering = ["-fecha_creacion", "-id"]
        indexes = [
            models.Index(fields=["activo", "fecha_visto"], name="idx_notif_activo_visto"),
            models.Index(fields=["producto", "tipo_notificacion"], name="idx_notif_producto_tipo"),
        ]
        constraints = [
            # una sola notificación vigente por condición (producto, tipo[, lote])
            models.UniqueConstraint(
                fields=["producto", "tipo_notificacion", "lote"],
                condition=models.Q(condicion_vigente=True, lote__isnull=False),
                name="uq_notif_vigente_lote",
            ),
            models.UniqueConstraint(
                fields=["producto", "tipo_notificacion"],
                condition=models.Q(condicion_vigente=True, lote__isnull=True),
                name="uq_notif_vigente_producto",
            ),
        ]

    def __str__(self):
        return f"{self.tipo_notificacion}: {self.mensaje}"
