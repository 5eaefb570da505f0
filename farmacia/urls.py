# farmacia/urls.py
from django.urls import path

from . import views

urlpatterns = [
    path("health", views.health, name="health"),

    # auth
    path("auth/login", views.login, name="auth-login"),
    path("auth/logout", views.logout, name="auth-logout"),
    path("auth/me", views.me, name="auth-me"),

    # usuarios
    path("users", views.UsersView.as_view(), name="users"),
    path("users/stats", views.user_stats, name="users-stats"),
    path("users/<int:pk>", views.UserDetailView.as_view(), name="user-detail"),
    path("users/<int:pk>/activity", views.user_activity, name="user-activity"),

    # catálogo
    path("products", views.ProductsView.as_view(), name="products"),
    path("products/search/<str:q>", views.product_search, name="products-search"),
    path("products/<int:pk>", views.ProductDetailView.as_view(), name="product-detail"),
    path("products/<int:pk>/lotes", views.product_lots, name="product-lots"),
    path("providers", views.ProvidersView.as_view(), name="providers"),
    path("providers/stats", views.provider_stats, name="providers-stats"),
    path("providers/<int:pk>", views.ProviderDetailView.as_view(), name="provider-detail"),
    path("units", views.UnitsView.as_view(), name="units"),

    # inventario: recepción
    path("inventory/reception", views.ReceptionsView.as_view(), name="receptions"),
    path("inventory/reception/pending-approvals", views.reception_pending, name="receptions-pending"),
    path("inventory/reception/<int:pk>", views.reception_detail, name="reception-detail"),
    path("inventory/reception/<int:pk>/approve", views.reception_approve, name="reception-approve"),
    path("inventory/reception/<int:pk>/complete", views.reception_approve, name="reception-complete"),
    path("inventory/reception/<int:pk>/reject", views.reception_reject, name="reception-reject"),

    # inventario: bajas
    path("inventory/bajas", views.BajasView.as_view(), name="bajas"),
    path("inventory/bajas/pending", views.baja_pending, name="bajas-pending"),
    path("inventory/bajas/<int:pk>", views.baja_detail, name="baja-detail"),
    path("inventory/bajas/<int:pk>/approve", views.baja_approve, name="baja-approve"),
    path("inventory/bajas/<int:pk>/reject", views.baja_reject, name="baja-reject"),

    # inventario: alertas
    path("inventory/lotes/expiring", views.expiring_lots, name="lots-expiring"),
    path("inventory/products/low-stock", views.low_stock, name="products-low-stock"),

    # órdenes de compra
    path("orders", views.OrdersView.as_view(), name="orders"),
    path("orders/stats", views.order_stats, name="orders-stats"),
    path("orders/auto-generate", views.order_auto_generate, name="orders-auto-generate"),
    path("orders/<int:pk>", views.order_detail, name="order-detail"),
    path("orders/<int:pk>/status", views.order_status, name="order-status"),
    path("orders/<int:pk>/create-reception", views.order_create_reception, name="order-create-reception"),

    # punto de venta
    path("pos/sales", views.SalesView.as_view(), name="sales"),
    path("pos/sales/<int:pk>", views.sale_detail, name="sale-detail"),
    path("pos/sales/<int:pk>/cancel", views.sale_cancel, name="sale-cancel"),

    # reportes
    path("reports/dashboard", views.report_dashboard, name="reports-dashboard"),
    path("reports/sales", views.report_sales, name="reports-sales"),
    path("reports/inventory", views.report_inventory, name="reports-inventory"),
    path("reports/expirations", views.report_expirations, name="reports-expirations"),

    # configuración
    path("settings", views.SettingsView.as_view(), name="settings"),

    # notificaciones
    path("notifications", views.NotificationsView.as_view(), name="notifications"),
    path("notifications/count", views.notification_count, name="notifications-count"),
    path("notifications/read-all", views.notification_read_all, name="notifications-read-all"),
    path("notifications/<int:pk>", views.notification_dismiss, name="notification-dismiss"),
    path("notifications/<int:pk>/read", views.notification_read, name="notification-read"),
]
