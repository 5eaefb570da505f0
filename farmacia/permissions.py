# farmacia/permissions.py
"""
Matriz de capacidades: operación -> roles permitidos.

Las vistas declaran qué operación ejecutan y la comprobación de rol se
resuelve aquí, una sola vez, en la frontera de autorización.
"""
from rest_framework.permissions import BasePermission

from .exceptions import AuthError, ForbiddenError
from .models import Usuario

ADMIN = Usuario.ADMINISTRADOR
CAJERO = Usuario.CAJERO
INVENTARIO = Usuario.INVENTARIO

ANY_ROLE = frozenset({ADMIN, CAJERO, INVENTARIO})
ADMIN_ONLY = frozenset({ADMIN})
ADMIN_INVENTARIO = frozenset({ADMIN, INVENTARIO})
ADMIN_CAJERO = frozenset({ADMIN, CAJERO})

CAPABILITIES = {
    # usuarios
    "users.manage": ADMIN_ONLY,
    # catálogo
    "catalog.read": ANY_ROLE,
    "catalog.write": ADMIN_INVENTARIO,
    "catalog.delete": ADMIN_ONLY,
    "providers.stats": ADMIN_INVENTARIO,
    # recepción
    "reception.create": ADMIN_INVENTARIO,
    "reception.read": ADMIN_INVENTARIO,
    "reception.pending": ADMIN_ONLY,
    "reception.approve": ADMIN_ONLY,
    "reception.reject": ADMIN_ONLY,
    # bajas
    "baja.create": ADMIN_INVENTARIO,
    "baja.read": ADMIN_INVENTARIO,
    "baja.pending": ADMIN_ONLY,
    "baja.approve": ADMIN_ONLY,
    "baja.reject": ADMIN_ONLY,
    # alertas de inventario
    "inventory.alerts": ANY_ROLE,
    # órdenes de compra
    "orders.read": ANY_ROLE,
    "orders.stats": ADMIN_INVENTARIO,
    "orders.create": ADMIN_INVENTARIO,
    "orders.auto_generate": ADMIN_INVENTARIO,
    "orders.update_status": ADMIN_INVENTARIO,
    "orders.create_reception": ADMIN_INVENTARIO,
    # punto de venta
    "sales.create": ADMIN_CAJERO,
    "sales.read": ANY_ROLE,
    "sales.cancel": ADMIN_ONLY,
    # reportes
    "reports.read": ANY_ROLE,
    # configuración
    "settings.read": ANY_ROLE,
    "settings.write": ADMIN_ONLY,
    # notificaciones
    "notifications.read": ANY_ROLE,
    "notifications.update": ANY_ROLE,
    "notifications.create": ADMIN_INVENTARIO,
}


def is_allowed(operation: str, rol: str) -> bool:
    return rol in CAPABILITIES[operation]


def _acting_user(request):
    user = getattr(request, "user", None)
    if not isinstance(user, Usuario):
        raise AuthError()
    return user


class IsAuthenticatedUsuario(BasePermission):
    def has_permission(self, request, view):
        _acting_user(request)
        return True


class Capability(IsAuthenticatedUsuario):
    """
    Uso con vistas de función:

        @api_view(["POST"])
        @permission_classes([Capability("reception.create")])
        def create_reception(request): ...

    DRF instancia cada clase de permiso con `permission()`, por eso la
    instancia se devuelve a sí misma al ser llamada.
    """

    def __init__(self, operation: str):
        if operation not in CAPABILITIES:
            raise KeyError(f"Unknown capability: {operation}")
        self.operation = operation

    def __call__(self):
        return self

    def has_permission(self, request, view):
        user = _acting_user(request)
        if not is_allowed(self.operation, user.rol):
            raise ForbiddenError()
        return True


class MethodCapability(IsAuthenticatedUsuario):
    """Para APIView con varios métodos: lee `view.capabilities[METHOD]`."""

    def has_permission(self, request, view):
        user = _acting_user(request)
        operation = getattr(view, "capabilities", {}).get(request.method)
        if operation is not None and not is_allowed(operation, user.rol):
            raise ForbiddenError()
        return True
