import pytest

from farmacia.models import HistorialCambio, Usuario

pytestmark = pytest.mark.django_db


def test_self_deactivation_is_rejected(admin_client, admin):
    r = admin_client.delete(f"/api/users/{admin.pk}")
    assert r.status_code == 400
    assert r.json()["message"] == "No puedes desactivar tu propia cuenta"
    admin.refresh_from_db()
    assert admin.activo


def test_self_deactivation_through_update_is_rejected(admin_client, admin):
    r = admin_client.put(f"/api/users/{admin.pk}", {"activo": False}, format="json")
    assert r.status_code == 400
    admin.refresh_from_db()
    assert admin.activo


def test_deactivate_other_user(admin_client, cajero, django_capture_on_commit_callbacks):
    with django_capture_on_commit_callbacks(execute=True):
        r = admin_client.delete(f"/api/users/{cajero.pk}")
    assert r.status_code == 200
    cajero.refresh_from_db()
    assert not cajero.activo
    assert HistorialCambio.objects.filter(detalles__usuarioDesactivado=cajero.pk).exists()


def test_create_user_validations(admin_client, cajero):
    base = {"nombre": "Nueva", "correo": "nueva@farmacia.com", "contrasena": "123456", "rol": Usuario.CAJERO}

    assert admin_client.post("/api/users", {**base, "correo": "no-es-correo"}, format="json").status_code == 400
    assert admin_client.post("/api/users", {**base, "contrasena": "123"}, format="json").status_code == 400
    assert admin_client.post("/api/users", {**base, "rol": "gerente"}, format="json").status_code == 400

    r = admin_client.post("/api/users", {**base, "correo": "CAJERO@farmacia.com"}, format="json")
    assert r.status_code == 400
    assert r.json()["message"] == "El correo ya está registrado"

    r = admin_client.post("/api/users", base, format="json")
    assert r.status_code == 201
    assert "contrasena" not in r.json()
    creado = Usuario.objects.get(correo="nueva@farmacia.com")
    assert creado.check_password("123456")


def test_update_user_email_uniqueness_and_password(admin_client, cajero, inventario):
    r = admin_client.put(f"/api/users/{cajero.pk}", {"correo": inventario.correo}, format="json")
    assert r.status_code == 400

    r = admin_client.put(f"/api/users/{cajero.pk}", {"nombre": "Caja 1", "contrasena": "nuevaclave"}, format="json")
    assert r.status_code == 200
    cajero.refresh_from_db()
    assert cajero.nombre == "Caja 1"
    assert cajero.check_password("nuevaclave")


def test_users_endpoints_are_admin_only(inventario_client):
    assert inventario_client.get("/api/users").status_code == 403
    assert inventario_client.get("/api/users/stats").status_code == 403


def test_stats_and_list(admin_client, admin, cajero, inventario):
    stats = admin_client.get("/api/users/stats").json()
    assert stats["total"] == 3
    assert stats["por_rol"] == {Usuario.ADMINISTRADOR: 1, Usuario.CAJERO: 1, Usuario.INVENTARIO: 1}

    rows = admin_client.get("/api/users").json()
    assert {row["correo"] for row in rows} == {admin.correo, cajero.correo, inventario.correo}
    assert all("total_ventas" in row for row in rows)


def test_activity_log(admin_client, admin, cajero, django_capture_on_commit_callbacks):
    with django_capture_on_commit_callbacks(execute=True):
        admin_client.put(f"/api/users/{cajero.pk}", {"nombre": "Otro"}, format="json")
    r = admin_client.get(f"/api/users/{admin.pk}/activity")
    assert r.status_code == 200
    assert r.json()[0]["accion"].startswith("Usuario actualizado")


def test_audit_log_is_append_only(admin):
    entry = HistorialCambio.objects.create(usuario=admin, accion="x")
    with pytest.raises(ValueError):
        entry.save()
    with pytest.raises(ValueError):
        entry.delete()
