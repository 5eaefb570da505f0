from datetime import timedelta
from decimal import Decimal

from django.core.management.base import BaseCommand
from django.db import transaction
from django.utils import timezone

from farmacia.models import Configuracion, Lote, Producto, Proveedor, UnidadMedida, Usuario
from farmacia.services import sync_stock_total

CONFIGURACIONES = [
    ("iva_porcentaje", "19", "Porcentaje de IVA aplicado a productos", "numero"),
    ("moneda", "COP", "Moneda del sistema", "texto"),
    ("alerta_roja_dias", "180", "Días para alerta roja de vencimiento", "numero"),
    ("alerta_amarilla_dias", "365", "Días para alerta amarilla de vencimiento", "numero"),
    ("margen_ganancia_default", "30", "Margen de ganancia por defecto (%)", "numero"),
    ("reposicion_factor_objetivo", "2", "Múltiplo del stock mínimo usado como objetivo de reposición", "numero"),
    ("cantidad_minima_pedido", "10", "Cantidad mínima por línea en órdenes automáticas", "numero"),
]

USUARIOS = [
    ("Administrador Principal", "admin@farmacia.com", "admin123", Usuario.ADMINISTRADOR),
    ("Cajero Principal", "cajero@farmacia.com", "cajero123", Usuario.CAJERO),
    ("Encargado de Inventario", "inventario@farmacia.com", "inventario123", Usuario.INVENTARIO),
]

UNIDADES = [("Tableta", "tab"), ("Cápsula", "cap"), ("Mililitro", "ml"), ("Caja", "cj")]

PRODUCTOS = [
    # codigo, nombre, principio, concentración, forma, presentación, laboratorio, registro, precio, mínimo, controlado
    ("7702132001234", "Acetaminofén 500mg", "Acetaminofén", "500mg", "Tableta", "Caja x 20 tabletas",
     "Genfar", "INVIMA 2023M-0001234", "3500", 50, False),
    ("7702132001235", "Ibuprofeno 400mg", "Ibuprofeno", "400mg", "Tableta", "Caja x 20 tabletas",
     "Lafrancol", "INVIMA 2023M-0001235", "4200", 40, False),
    ("7702132001236", "Loratadina 10mg", "Loratadina", "10mg", "Tableta", "Caja x 10 tabletas",
     "MK", "INVIMA 2023M-0001236", "8500", 30, False),
    ("7702132001237", "Omeprazol 20mg", "Omeprazol", "20mg", "Cápsula", "Caja x 14 cápsulas",
     "Tecnoquímicas", "INVIMA 2023M-0001237", "12000", 25, False),
    ("7702132001238", "Amoxicilina 500mg", "Amoxicilina", "500mg", "Cápsula", "Caja x 12 cápsulas",
     "Chalver", "INVIMA 2023M-0001238", "15000", 20, True),
]


class Command(BaseCommand):
    help = "Carga configuración, usuarios, proveedor y productos de ejemplo (idempotente)."

    def add_arguments(self, parser):
        parser.add_argument("--sin-lotes", action="store_true", help="No crear lotes de ejemplo")

    @transaction.atomic
    def handle(self, *args, **options):
        for clave, valor, descripcion, tipo in CONFIGURACIONES:
            Configuracion.objects.get_or_create(
                clave=clave, defaults={"valor": valor, "descripcion": descripcion, "tipo_dato": tipo},
            )

        for nombre, correo, contrasena, rol in USUARIOS:
            usuario, created = Usuario.objects.get_or_create(correo=correo, defaults={"nombre": nombre, "rol": rol})
            if created:
                usuario.set_password(contrasena)
                usuario.save(update_fields=["contrasena_hash"])

        unidades = {}
        for nombre, abreviacion in UNIDADES:
            unidades[nombre], _ = UnidadMedida.objects.get_or_create(nombre=nombre, defaults={"abreviacion": abreviacion})

        proveedor, _ = Proveedor.objects.get_or_create(
            nombre="Farmacéutica Nacional S.A.",
            defaults={
                "nit": "900123456-1",
                "contacto": "Juan Pérez",
                "telefono": "3001234567",
                "correo": "ventas@farmanacional.com",
                "direccion": "Calle 100 #45-67, Bogotá",
            },
        )

        hoy = timezone.localdate()
        nuevos = []
        for (codigo, nombre, principio, conc, forma, pres, lab, registro,
             precio, minimo, controlado) in PRODUCTOS:
            producto, created = Producto.objects.get_or_create(
                codigo_barras=codigo,
                defaults={
                    "nombre": nombre, "principio_activo": principio, "concentracion": conc,
                    "forma_farmaceutica": forma, "presentacion": pres, "laboratorio": lab,
                    "registro_sanitario": registro, "precio_venta_sugerido": Decimal(precio),
                    "stock_minimo": minimo, "es_controlado": controlado,
                    "unidad": unidades.get(forma), "proveedor_preferido": proveedor,
                },
            )
            if created:
                nuevos.append(producto)

        if not options["sin_lotes"]:
            for producto in nuevos:
                precio = producto.precio_venta_sugerido
                for sufijo, dias, inicial, disponible in (("001", 200, 100, 85), ("002", 540, 150, 150)):
                    Lote.objects.create(
                        producto=producto,
                        numero_lote=f"L{producto.codigo_barras[-4:]}{sufijo}",
                        fecha_vencimiento=hoy + timedelta(days=dias),
                        cantidad_inicial=inicial,
                        cantidad_disponible=disponible,
                        precio_compra=(precio * Decimal("0.7")).quantize(Decimal("0.01")),
                        precio_venta_lote=precio,
                    )
            sync_stock_total(p.pk for p in nuevos)

        self.stdout.write(self.style.SUCCESS(
            f"Seed listo: {len(USUARIOS)} usuarios, {len(nuevos)} productos nuevos, proveedor '{proveedor.nombre}'"
        ))
