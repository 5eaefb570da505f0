# farmacia/services.py

from __future__ import annotations

import logging
from collections import OrderedDict, defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from django.conf import settings
from django.db import transaction
from django.db.models import F, Max, Sum
from django.db.models.functions import Coalesce
from django.utils import timezone

from . import audit
from .exceptions import ConflictError, InsufficientStockError, NotFoundError, ValidationError
from .models import (
    # flujos
    ActaRecepcion, DetalleActaRecepcion, BajaInventario,
    OrdenCompra, DetalleOrdenCompra, Venta, DetalleVenta,
    # entidades base
    Configuracion, Lote, Producto, Proveedor, Usuario,
)
from .workflows import BAJA_FSM, ORDER_FSM, RECEPTION_FSM, SALE_FSM

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def _round2(v) -> Decimal:
    return Decimal(v or 0).quantize(CENT, rounding=ROUND_HALF_UP)


# ================== Configuración de negocio ==================

def get_setting(clave: str, default=None) -> Optional[str]:
    row = Configuracion.objects.filter(clave=clave).values_list("valor", flat=True).first()
    return row if row not in (None, "") else default


def setting_decimal(clave: str, default) -> Decimal:
    try:
        return Decimal(str(get_setting(clave, default)))
    except ArithmeticError:
        return Decimal(str(default))


def setting_int(clave: str, default: int) -> int:
    try:
        return int(Decimal(str(get_setting(clave, default))))
    except (ArithmeticError, ValueError):
        return int(default)


def iva_rate() -> Decimal:
    return setting_decimal("iva_porcentaje", settings.DEFAULT_IVA_PERCENT) / Decimal("100")


# ================== Stock agregado ==================

def lock_products(producto_ids: Iterable[int]) -> list:
    """
    Bloquea las filas de Producto (por id) antes de tocar sus lotes.
    Orden de candados en todo movimiento de stock: cabecera, productos, lotes.
    """
    ids = sorted({int(i) for i in producto_ids})
    return list(Producto.objects.select_for_update().filter(pk__in=ids).order_by("id"))


def sync_stock_total(producto_ids: Iterable[int]) -> dict:
    """
    Recalcula Producto.stock_total = Σ lotes.cantidad_disponible.
    Debe llamarse dentro de la misma transacción que movió los lotes y con
    los productos ya bloqueados por `lock_products`.
    """
    totals = {}
    for pid in sorted(set(producto_ids)):
        total = (
            Lote.objects.filter(producto_id=pid)
            .aggregate(s=Coalesce(Sum("cantidad_disponible"), 0))["s"]
        )
        Producto.objects.filter(pk=pid).update(stock_total=total)
        totals[pid] = int(total)
    return totals


def _refresh_lot_state(lote: Lote):
    if lote.cantidad_disponible <= 0:
        estado = Lote.AGOTADO
    elif lote.fecha_vencimiento < timezone.localdate():
        estado = Lote.VENCIDO
    else:
        estado = Lote.ACTIVO
    if lote.estado != estado:
        lote.estado = estado
        lote.save(update_fields=["estado"])


def _lock(model, pk, not_found: str):
    obj = model.objects.select_for_update().filter(pk=pk).first()
    if obj is None:
        raise NotFoundError(not_found)
    return obj


# ================== Recepción ==================

@dataclass
class ReceptionLine:
    producto_id: int
    cantidad: int
    fecha_vencimiento: Optional[date]
    precio_compra: Decimal = Decimal("0.00")
    numero_lote: str = ""


def _active_products(ids) -> dict:
    ids = {int(i) for i in ids}
    products = Producto.objects.filter(pk__in=ids, activo=True)
    pmap = {p.pk: p for p in products}
    missing = sorted(ids - set(pmap))
    if missing:
        raise ValidationError(f"Productos no encontrados o inactivos: {missing}")
    return pmap


def _active_provider(proveedor_id) -> Proveedor:
    proveedor = Proveedor.objects.filter(pk=proveedor_id, activo=True).first()
    if proveedor is None:
        raise ValidationError(f"Proveedor {proveedor_id} no encontrado o inactivo")
    return proveedor


@transaction.atomic
def create_reception(
    *, proveedor_id: int, usuario: Usuario, lineas: list[ReceptionLine],
    numero_factura: str = "", observaciones: str = "", orden: OrdenCompra | None = None,
    require_expiration: bool = True,
) -> ActaRecepcion:
    if not lineas:
        raise ValidationError("La recepción debe tener al menos un producto")
    for ln in lineas:
        if ln.cantidad is None or int(ln.cantidad) <= 0:
            raise ValidationError("Cada línea debe tener una cantidad mayor a 0")
        if require_expiration and ln.fecha_vencimiento is None:
            raise ValidationError("Cada línea debe indicar la fecha de vencimiento")

    proveedor = _active_provider(proveedor_id)
    _active_products(ln.producto_id for ln in lineas)

    acta = ActaRecepcion.objects.create(
        proveedor=proveedor,
        orden_compra=orden,
        usuario_receptor=usuario,
        numero_factura=numero_factura or "",
        observaciones=observaciones or "",
        estado=RECEPTION_FSM.initial,
    )
    DetalleActaRecepcion.objects.bulk_create([
        DetalleActaRecepcion(
            acta=acta,
            producto_id=ln.producto_id,
            numero_lote=ln.numero_lote or "",
            fecha_vencimiento=ln.fecha_vencimiento,
            cantidad=int(ln.cantidad),
            precio_compra=_round2(ln.precio_compra),
        )
        for ln in lineas
    ])

    logger.info("Recepción #%s creada por usuario %s (%d líneas)", acta.pk, usuario.pk, len(lineas))
    audit.record(usuario, f"Recepción #{acta.pk} creada", {
        "actaId": acta.pk, "proveedor": proveedor.pk, "cantidadItems": len(lineas),
    })
    return acta


def pending_receptions():
    # FIFO: la más antigua primero
    return (
        ActaRecepcion.objects.filter(estado=ActaRecepcion.PENDIENTE)
        .select_related("proveedor", "usuario_receptor")
        .prefetch_related("detalles__producto")
        .order_by("fecha_recepcion", "id")
    )


def _lot_for_line(detalle: DetalleActaRecepcion, margen: Decimal) -> Lote:
    lote = (
        Lote.objects.select_for_update()
        .filter(producto_id=detalle.producto_id, fecha_vencimiento=detalle.fecha_vencimiento)
        .order_by("id")
        .first()
    )
    if lote is not None:
        lote.cantidad_disponible = F("cantidad_disponible") + detalle.cantidad
        lote.cantidad_inicial = F("cantidad_inicial") + detalle.cantidad
        lote.save(update_fields=["cantidad_disponible", "cantidad_inicial"])
        lote.refresh_from_db(fields=["cantidad_disponible", "cantidad_inicial"])
        _refresh_lot_state(lote)
        return lote

    precio_compra = _round2(detalle.precio_compra)
    if precio_compra > 0:
        precio_venta = _round2(precio_compra * (1 + margen))
    else:
        precio_venta = _round2(detalle.producto.precio_venta_sugerido)
    numero = detalle.numero_lote or f"R{detalle.acta_id}-{detalle.pk}"
    lote = Lote.objects.create(
        producto_id=detalle.producto_id,
        numero_lote=numero,
        fecha_vencimiento=detalle.fecha_vencimiento,
        cantidad_inicial=detalle.cantidad,
        cantidad_disponible=detalle.cantidad,
        precio_compra=precio_compra,
        precio_venta_lote=precio_venta,
    )
    _refresh_lot_state(lote)
    return lote


@transaction.atomic
def approve_reception(acta_id: int, *, aprobador: Usuario) -> ActaRecepcion:
    acta = _lock(ActaRecepcion, acta_id, "Recepción no encontrada")
    RECEPTION_FSM.check(acta.estado, ActaRecepcion.APROBADA)

    detalles = list(acta.detalles.select_related("producto").order_by("id"))
    sin_fecha = [d.producto.nombre for d in detalles if d.fecha_vencimiento is None]
    if sin_fecha:
        raise ValidationError(f"Faltan fechas de vencimiento para: {', '.join(sin_fecha)}")

    lock_products(d.producto_id for d in detalles)
    acta.usuario_aprobador = aprobador
    acta.fecha_aprobacion = timezone.now()
    RECEPTION_FSM.transition(acta, ActaRecepcion.APROBADA, update_fields=["usuario_aprobador", "fecha_aprobacion"])

    margen = setting_decimal("margen_ganancia_default", settings.DEFAULT_MARGIN_PERCENT) / Decimal("100")
    for detalle in detalles:
        lote = _lot_for_line(detalle, margen)
        detalle.lote = lote
        detalle.save(update_fields=["lote"])

    totals = sync_stock_total(d.producto_id for d in detalles)
    RECEPTION_FSM.transition(acta, ActaRecepcion.COMPLETADA)

    logger.info("Recepción #%s aprobada por %s; stock: %s", acta.pk, aprobador.pk, totals)
    audit.record(aprobador, f"Recepción #{acta.pk} aprobada y completada", {
        "actaId": acta.pk,
        "cantidadItems": len(detalles),
        "unidades": sum(d.cantidad for d in detalles),
    })
    return acta


@transaction.atomic
def reject_reception(acta_id: int, *, aprobador: Usuario, motivo: str) -> ActaRecepcion:
    if not (motivo or "").strip():
        raise ValidationError("El motivo del rechazo es requerido")
    acta = _lock(ActaRecepcion, acta_id, "Recepción no encontrada")
    acta.usuario_aprobador = aprobador
    acta.fecha_aprobacion = timezone.now()
    acta.motivo_rechazo = motivo.strip()
    RECEPTION_FSM.transition(
        acta, ActaRecepcion.RECHAZADA,
        update_fields=["usuario_aprobador", "fecha_aprobacion", "motivo_rechazo"],
    )
    logger.info("Recepción #%s rechazada por %s", acta.pk, aprobador.pk)
    audit.record(aprobador, f"Recepción #{acta.pk} rechazada", {"actaId": acta.pk, "motivo": acta.motivo_rechazo})
    return acta


# ================== Bajas ==================

@transaction.atomic
def create_baja(*, lote_id: int, cantidad: int, motivo: str, usuario: Usuario, observaciones: str = "") -> BajaInventario:
    if cantidad is None or int(cantidad) <= 0:
        raise ValidationError("La cantidad debe ser mayor a 0")
    if motivo not in dict(BajaInventario.MOTIVOS):
        raise ValidationError("El motivo de baja es requerido")
    lote = Lote.objects.filter(pk=lote_id).first()
    if lote is None:
        raise NotFoundError("Lote no encontrado")
    if int(cantidad) > lote.cantidad_disponible:
        raise InsufficientStockError(
            f"La cantidad debe ser menor o igual a {lote.cantidad_disponible}",
            disponible=lote.cantidad_disponible,
        )

    baja = BajaInventario.objects.create(
        lote=lote, cantidad=int(cantidad), motivo=motivo,
        observaciones=observaciones or "", usuario_solicitante=usuario,
        estado=BAJA_FSM.initial,
    )
    logger.info("Baja #%s solicitada sobre lote %s (%d u.)", baja.pk, lote.pk, baja.cantidad)
    audit.record(usuario, f"Baja #{baja.pk} solicitada", {
        "bajaId": baja.pk, "loteId": lote.pk, "cantidad": baja.cantidad, "motivo": motivo,
    })
    return baja


def pending_bajas():
    return (
        BajaInventario.objects.filter(estado=BajaInventario.PENDIENTE)
        .select_related("lote__producto", "usuario_solicitante")
        .order_by("fecha_solicitud", "id")
    )


@transaction.atomic
def approve_baja(baja_id: int, *, aprobador: Usuario, observaciones: str = "") -> BajaInventario:
    baja = _lock(BajaInventario, baja_id, "Baja no encontrada")
    BAJA_FSM.check(baja.estado, BajaInventario.APROBADA)

    # mismos candados que usan las ventas: producto y luego lote
    lock_products(Lote.objects.filter(pk=baja.lote_id).values_list("producto_id", flat=True))
    lote = Lote.objects.select_for_update().get(pk=baja.lote_id)
    if lote.cantidad_disponible < baja.cantidad:
        logger.warning("Baja #%s rechazada por stock: lote %s tiene %s, pide %s",
                       baja.pk, lote.pk, lote.cantidad_disponible, baja.cantidad)
        raise InsufficientStockError(
            f"Stock insuficiente en el lote {lote.numero_lote}: disponible {lote.cantidad_disponible}, "
            f"requerido {baja.cantidad}",
            disponible=lote.cantidad_disponible,
            requerido=baja.cantidad,
        )

    lote.cantidad_disponible = F("cantidad_disponible") - baja.cantidad
    lote.save(update_fields=["cantidad_disponible"])
    lote.refresh_from_db(fields=["cantidad_disponible"])
    _refresh_lot_state(lote)
    sync_stock_total([lote.producto_id])

    baja.usuario_aprobador = aprobador
    baja.observaciones_aprobador = observaciones or ""
    baja.fecha_aprobacion = timezone.now()
    BAJA_FSM.transition(
        baja, BajaInventario.APROBADA,
        update_fields=["usuario_aprobador", "observaciones_aprobador", "fecha_aprobacion"],
    )

    audit.record(aprobador, f"Baja #{baja.pk} aprobada", {
        "bajaId": baja.pk, "loteId": lote.pk, "cantidad": baja.cantidad,
    })
    return baja


@transaction.atomic
def reject_baja(baja_id: int, *, aprobador: Usuario, motivo: str) -> BajaInventario:
    if not (motivo or "").strip():
        raise ValidationError("El motivo del rechazo es requerido")
    baja = _lock(BajaInventario, baja_id, "Baja no encontrada")
    baja.usuario_aprobador = aprobador
    baja.observaciones_aprobador = motivo.strip()
    baja.fecha_aprobacion = timezone.now()
    BAJA_FSM.transition(
        baja, BajaInventario.RECHAZADA,
        update_fields=["usuario_aprobador", "observaciones_aprobador", "fecha_aprobacion"],
    )
    audit.record(aprobador, f"Baja #{baja.pk} rechazada", {"bajaId": baja.pk, "motivo": baja.observaciones_aprobador})
    return baja


# ================== Órdenes de compra ==================

@dataclass
class OrderLine:
    producto_id: int
    cantidad_solicitada: int
    precio_unitario: Decimal = Decimal("0.00")
    notas: str = ""


def next_order_number(prefix: str = "OC") -> str:
    last = (
        OrdenCompra.objects
        .filter(numero_orden__startswith=f"{prefix}-")
        .exclude(numero_orden__startswith=f"{prefix}-AUTO-")
        .aggregate(mx=Max("numero_orden"))
        .get("mx")
    )
    seq = int(last.rsplit("-", 1)[-1]) + 1 if last else 1
    return f"{prefix}-{seq:06d}"


def _build_order(*, proveedor: Proveedor, usuario: Usuario, lineas: list[OrderLine], numero: str,
                 es_automatica: bool = False, observaciones: str = "", fecha_entrega_esperada=None) -> OrdenCompra:
    subtotal = sum((_round2(ln.precio_unitario) * int(ln.cantidad_solicitada) for ln in lineas), Decimal("0"))
    impuestos = _round2(subtotal * iva_rate())
    orden = OrdenCompra.objects.create(
        numero_orden=numero,
        proveedor=proveedor,
        usuario_creador=usuario,
        estado=ORDER_FSM.initial,
        es_automatica=es_automatica,
        fecha_entrega_esperada=fecha_entrega_esperada,
        observaciones=observaciones or "",
        subtotal=_round2(subtotal),
        impuestos=impuestos,
        total=_round2(subtotal + impuestos),
    )
    DetalleOrdenCompra.objects.bulk_create([
        DetalleOrdenCompra(
            orden=orden,
            producto_id=ln.producto_id,
            cantidad_solicitada=int(ln.cantidad_solicitada),
            precio_unitario=_round2(ln.precio_unitario),
            total_linea=_round2(_round2(ln.precio_unitario) * int(ln.cantidad_solicitada)),
            notas=ln.notas or "",
        )
        for ln in lineas
    ])
    return orden


@transaction.atomic
def create_order(*, proveedor_id: int, usuario: Usuario, lineas: list[OrderLine],
                 fecha_entrega_esperada=None, observaciones: str = "") -> OrdenCompra:
    if not lineas:
        raise ValidationError("La orden debe tener al menos un producto")
    if any(int(ln.cantidad_solicitada) <= 0 for ln in lineas):
        raise ValidationError("Cada línea debe tener una cantidad mayor a 0")
    proveedor = _active_provider(proveedor_id)
    _active_products(ln.producto_id for ln in lineas)

    orden = _build_order(
        proveedor=proveedor, usuario=usuario, lineas=lineas,
        numero=next_order_number("OC"),
        observaciones=observaciones, fecha_entrega_esperada=fecha_entrega_esperada,
    )
    logger.info("Orden %s creada (%d líneas, total %s)", orden.numero_orden, len(lineas), orden.total)
    audit.record(usuario, f"Orden de compra {orden.numero_orden} creada", {
        "ordenId": orden.pk, "proveedor": proveedor.pk, "total": orden.total, "cantidadItems": len(lineas),
    })
    return orden


@transaction.atomic
def update_order_status(orden_id: int, *, estado: str, usuario: Usuario, observaciones: str | None = None) -> OrdenCompra:
    orden = _lock(OrdenCompra, orden_id, "Orden de compra no encontrada")
    anterior = orden.estado
    extra = []
    if observaciones:
        orden.observaciones = observaciones
        extra.append("observaciones")
    if estado == OrdenCompra.RECIBIDA:
        orden.fecha_recepcion = timezone.now()
        extra.append("fecha_recepcion")
    ORDER_FSM.transition(orden, estado, update_fields=extra)

    audit.record(usuario, f"Orden {orden.numero_orden} cambió a estado: {estado}", {
        "ordenId": orden.pk, "estadoAnterior": anterior, "estadoNuevo": estado, "observaciones": observaciones,
    })
    return orden


@dataclass
class AutoOrderResult:
    orders: list = field(default_factory=list)
    unresolved: list = field(default_factory=list)


def _last_provider_for(producto_id: int) -> Optional[int]:
    return (
        ActaRecepcion.objects
        .filter(detalles__producto_id=producto_id, proveedor__activo=True)
        .order_by("-fecha_recepcion", "-id")
        .values_list("proveedor_id", flat=True)
        .first()
    )


def replenishment_quantity(producto: Producto, *, factor: int, minimo_pedido: int) -> int:
    objetivo = producto.stock_maximo or producto.stock_minimo * factor
    return max(objetivo - producto.stock_total, minimo_pedido, 1)


def _estimated_price(producto: Producto) -> Decimal:
    last_lot = producto.lotes.exclude(precio_compra=0).order_by("-fecha_ingreso", "-id").first()
    if last_lot is not None:
        return _round2(last_lot.precio_compra)
    return _round2(Decimal(producto.precio_venta_sugerido) * Decimal("0.7"))


@transaction.atomic
def generate_auto_orders(*, usuario: Usuario) -> AutoOrderResult:
    """
    Un borrador (Pendiente, es_automatica) por proveedor con una línea por
    producto bajo mínimo. Los productos sin proveedor conocido se reportan en
    `unresolved` y no detienen el lote.
    """
    factor = setting_int("reposicion_factor_objetivo", settings.AUTO_ORDER_TARGET_FACTOR)
    minimo_pedido = setting_int("cantidad_minima_pedido", settings.AUTO_ORDER_MIN_QTY)

    candidatos = (
        Producto.objects
        .filter(activo=True, stock_total__lt=F("stock_minimo"))
        .select_related("proveedor_preferido")
        .order_by("nombre")
    )

    by_provider: "OrderedDict[int, list[OrderLine]]" = OrderedDict()
    result = AutoOrderResult()
    for producto in candidatos:
        proveedor_id = None
        if producto.proveedor_preferido_id and producto.proveedor_preferido.activo:
            proveedor_id = producto.proveedor_preferido_id
        else:
            proveedor_id = _last_provider_for(producto.pk)
        if proveedor_id is None:
            result.unresolved.append({
                "producto_id": producto.pk,
                "nombre": producto.nombre,
                "stock_total": producto.stock_total,
                "stock_minimo": producto.stock_minimo,
                "motivo": "Sin proveedor conocido",
            })
            continue

        cantidad = replenishment_quantity(producto, factor=factor, minimo_pedido=minimo_pedido)
        by_provider.setdefault(proveedor_id, []).append(OrderLine(
            producto_id=producto.pk,
            cantidad_solicitada=cantidad,
            precio_unitario=_estimated_price(producto),
            notas=f"Reabastecimiento automático - Stock actual: {producto.stock_total}, "
                  f"Mínimo: {producto.stock_minimo}",
        ))

    for proveedor_id, lineas in by_provider.items():
        orden = _build_order(
            proveedor=Proveedor.objects.get(pk=proveedor_id),
            usuario=usuario,
            lineas=lineas,
            numero=next_order_number("OC-AUTO"),
            es_automatica=True,
            observaciones="Orden generada automáticamente por stock bajo",
        )
        result.orders.append(orden)
        audit.record(usuario, f"Orden automática {orden.numero_orden} generada por stock bajo", {
            "ordenId": orden.pk, "productosIncluidos": len(lineas), "total": orden.total,
        })

    logger.info("Auto-órdenes: %d creadas, %d productos sin proveedor",
                len(result.orders), len(result.unresolved))
    return result


@transaction.atomic
def create_reception_from_order(orden_id: int, *, usuario: Usuario, numero_factura: str = "",
                                observaciones: str = "", overrides: dict | None = None) -> ActaRecepcion:
    """
    `overrides` = {producto_id: {"fecha_vencimiento", "numero_lote", "cantidad"}} para
    completar los datos del lote; sin fecha la recepción no se puede aprobar.
    """
    orden = _lock(OrdenCompra, orden_id, "Orden de compra no encontrada")
    if orden.estado != OrdenCompra.RECIBIDA:
        raise ConflictError(
            f"Solo se puede crear la recepción de una orden en estado {OrdenCompra.RECIBIDA} "
            f"(estado actual: {orden.estado})",
            estadoActual=orden.estado,
        )

    overrides = {int(k): v for k, v in (overrides or {}).items()}
    detalles = list(orden.detalles.order_by("id"))
    ajenos = sorted(set(overrides) - {det.producto_id for det in detalles})
    if ajenos:
        raise ValidationError(f"Productos que no pertenecen a la orden: {ajenos}", productos=ajenos)

    lineas = []
    for det in detalles:
        extra = overrides.get(det.producto_id, {})
        lineas.append(ReceptionLine(
            producto_id=det.producto_id,
            cantidad=int(extra.get("cantidad") or det.cantidad_solicitada),
            fecha_vencimiento=extra.get("fecha_vencimiento"),
            precio_compra=det.precio_unitario,
            numero_lote=extra.get("numero_lote") or "",
        ))

    acta = create_reception(
        proveedor_id=orden.proveedor_id,
        usuario=usuario,
        lineas=lineas,
        numero_factura=numero_factura,
        observaciones=observaciones or f"Recepción basada en orden {orden.numero_orden}",
        orden=orden,
        require_expiration=False,
    )
    ORDER_FSM.transition(orden, OrdenCompra.COMPLETADA)
    audit.record(usuario, f"Acta de recepción #{acta.pk} creada desde orden {orden.numero_orden}", {
        "actaId": acta.pk, "ordenId": orden.pk, "cantidadItems": len(lineas),
    })
    return acta


# ================== Punto de venta ==================

@dataclass
class SaleLine:
    producto_id: int
    cantidad: int


@transaction.atomic
def create_sale(*, usuario: Usuario, lineas: list[SaleLine], metodo_pago: str = "efectivo",
                descuento_total=Decimal("0")) -> Venta:
    if not lineas:
        raise ValidationError("La venta debe tener al menos un producto")

    wanted = defaultdict(int)
    for ln in lineas:
        if int(ln.cantidad) <= 0:
            raise ValidationError("Cada línea debe tener una cantidad mayor a 0")
        wanted[int(ln.producto_id)] += int(ln.cantidad)

    lock_products(wanted.keys())
    pmap = _active_products(wanted.keys())

    # candado por id (orden estable entre transacciones), consumo FEFO en memoria
    locked = list(
        Lote.objects.select_for_update()
        .filter(producto_id__in=wanted.keys(), cantidad_disponible__gt=0)
        .order_by("id")
    )
    lots_by_product = defaultdict(list)
    for lote in locked:
        lots_by_product[lote.producto_id].append(lote)
    for lots in lots_by_product.values():
        lots.sort(key=lambda l: (l.fecha_vencimiento, l.id))

    # validar todo antes de tocar un solo lote
    for pid, qty in wanted.items():
        available = sum(l.cantidad_disponible for l in lots_by_product[pid])
        if available < qty:
            producto = pmap[pid]
            logger.warning("Venta rechazada: %s disponible %s, pedido %s", producto.nombre, available, qty)
            raise InsufficientStockError(
                f"Stock insuficiente para {producto.nombre}. Faltante: {qty - available}",
                producto_id=pid, disponible=available, requerido=qty,
            )

    rate = iva_rate()
    subtotal = Decimal("0")
    impuesto_total = Decimal("0")
    detalles = []
    for pid, qty in wanted.items():
        producto = pmap[pid]
        remaining = qty
        for lote in lots_by_product[pid]:
            if remaining <= 0:
                break
            take = min(lote.cantidad_disponible, remaining)
            Lote.objects.filter(pk=lote.pk).update(cantidad_disponible=F("cantidad_disponible") - take)
            lote.cantidad_disponible -= take
            _refresh_lot_state(lote)

            precio = _round2(lote.precio_venta_lote or producto.precio_venta_sugerido)
            line_total = _round2(precio * take)
            subtotal += line_total
            if producto.aplica_iva:
                impuesto_total += line_total * rate
            detalles.append(DetalleVenta(
                lote_id=lote.pk, cantidad=take,
                precio_venta_unitario=precio, total_linea=line_total,
            ))
            remaining -= take

    descuento = _round2(descuento_total)
    if descuento < 0:
        raise ValidationError("El descuento no puede ser negativo")
    impuesto_total = _round2(impuesto_total)
    total = _round2(subtotal + impuesto_total - descuento)
    if total < 0:
        raise ValidationError("El descuento no puede superar el total de la venta")

    venta = Venta.objects.create(
        usuario=usuario,
        subtotal=_round2(subtotal),
        descuento_total=descuento,
        impuesto_total=impuesto_total,
        total_a_pagar=total,
        metodo_pago=metodo_pago or "efectivo",
        estado=SALE_FSM.initial,
    )
    for d in detalles:
        d.venta = venta
    DetalleVenta.objects.bulk_create(detalles)
    sync_stock_total(wanted.keys())

    logger.info("Venta #%s registrada por %s: total %s", venta.pk, usuario.pk, venta.total_a_pagar)
    audit.record(usuario, f"Venta #{venta.pk} completada", {
        "ventaId": venta.pk, "totalAPagar": venta.total_a_pagar, "cantidadItems": len(wanted),
    })
    return venta


@transaction.atomic
def cancel_sale(venta_id: int, *, usuario: Usuario, motivo: str = "Cancelación manual") -> Venta:
    venta = _lock(Venta, venta_id, "Venta no encontrada")
    if venta.estado == Venta.CANCELADA:
        raise ConflictError("La venta ya está cancelada")

    detalles = list(venta.detalles.all())
    lote_ids = sorted({d.lote_id for d in detalles})
    lock_products(Lote.objects.filter(pk__in=lote_ids).values_list("producto_id", flat=True))
    lotes = {l.pk: l for l in Lote.objects.select_for_update().filter(pk__in=lote_ids).order_by("id")}

    for d in detalles:
        Lote.objects.filter(pk=d.lote_id).update(cantidad_disponible=F("cantidad_disponible") + d.cantidad)
    for lote in lotes.values():
        lote.refresh_from_db(fields=["cantidad_disponible"])
        _refresh_lot_state(lote)
    sync_stock_total(l.producto_id for l in lotes.values())

    SALE_FSM.transition(venta, Venta.CANCELADA)
    logger.info("Venta #%s cancelada por %s", venta.pk, usuario.pk)
    audit.record(usuario, f"Venta #{venta.pk} cancelada", {"ventaId": venta.pk, "motivo": motivo})
    return venta
