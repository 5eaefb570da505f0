# farmacia/workflows.py
"""
Máquinas de estado explícitas para recepción, bajas, órdenes y ventas.

Cada flujo tiene una tabla de transiciones cerrada; `transition()` es el
único punto que escribe el campo `estado` y rechaza cualquier movimiento que
no esté en la tabla. Quien llama debe haber bloqueado la fila con
`select_for_update()` dentro de la misma transacción.
"""
import logging
from dataclasses import dataclass, field

from .exceptions import InvalidTransitionError
from .models import ActaRecepcion, BajaInventario, OrdenCompra, Venta

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StateMachine:
    name: str
    initial: str
    transitions: dict = field(default_factory=dict)

    @property
    def states(self) -> frozenset:
        targets = {t for ts in self.transitions.values() for t in ts}
        return frozenset(set(self.transitions) | targets)

    @property
    def terminal(self) -> frozenset:
        return frozenset(s for s in self.states if not self.transitions.get(s))

    def allowed(self, source: str) -> frozenset:
        return frozenset(self.transitions.get(source, ()))

    def can(self, source: str, target: str) -> bool:
        return target in self.allowed(source)

    def check(self, source: str, target: str):
        if target not in self.states:
            raise InvalidTransitionError(f"Estado no válido: {target}")
        if source in self.terminal:
            raise InvalidTransitionError(f"{self.name} ya está en estado final ({source})", estadoActual=source)
        if not self.can(source, target):
            raise InvalidTransitionError(
                f"{self.name}: no se puede pasar de {source} a {target}",
                estadoActual=source,
                permitidos=sorted(self.allowed(source)),
            )

    def transition(self, obj, target: str, *, save: bool = True, update_fields=None):
        source = obj.estado
        self.check(source, target)
        obj.estado = target
        if save:
            fields = ["estado"] + list(update_fields or [])
            obj.save(update_fields=fields)
        logger.info("%s #%s: %s -> %s", self.name, obj.pk, source, target)
        return obj


RECEPTION_FSM = StateMachine(
    name="Recepción",
    initial=ActaRecepcion.PENDIENTE,
    transitions={
        ActaRecepcion.PENDIENTE: {ActaRecepcion.APROBADA, ActaRecepcion.RECHAZADA},
        ActaRecepcion.APROBADA: {ActaRecepcion.COMPLETADA},
        ActaRecepcion.RECHAZADA: set(),
        ActaRecepcion.COMPLETADA: set(),
    },
)

BAJA_FSM = StateMachine(
    name="Baja",
    initial=BajaInventario.PENDIENTE,
    transitions={
        BajaInventario.PENDIENTE: {BajaInventario.APROBADA, BajaInventario.RECHAZADA},
        BajaInventario.APROBADA: set(),
        BajaInventario.RECHAZADA: set(),
    },
)

ORDER_FSM = StateMachine(
    name="Orden de compra",
    initial=OrdenCompra.PENDIENTE,
    transitions={
        OrdenCompra.PENDIENTE: {OrdenCompra.ENVIADA, OrdenCompra.CANCELADA},
        OrdenCompra.ENVIADA: {OrdenCompra.RECIBIDA, OrdenCompra.CANCELADA},
        OrdenCompra.RECIBIDA: {OrdenCompra.COMPLETADA, OrdenCompra.CANCELADA},
        OrdenCompra.COMPLETADA: set(),
        OrdenCompra.CANCELADA: set(),
    },
)

SALE_FSM = StateMachine(
    name="Venta",
    initial=Venta.COMPLETADA,
    transitions={
        Venta.COMPLETADA: {Venta.CANCELADA},
        Venta.CANCELADA: set(),
    },
)
