# facturacion/management/commands/consultar_autorizacion.py
# -*- coding: utf-8 -*-
"""
Consulta UNA vez el estado de autorización de un comprobante en el SRI.
No reenvía el comprobante.

Uso:

    python manage.py consultar_autorizacion <clave_acceso>
    python manage.py consultar_autorizacion <clave_acceso> --ambiente=produccion
"""
from __future__ import annotations

from typing import Any, Optional

from django.core.management.base import BaseCommand, CommandError

from facturacion.services.sri.clave_acceso import validar_clave_acceso
from facturacion.services.sri.client import SRIClient
from facturacion.services.sri.exceptions import ErrorTransporteSRI


class Command(BaseCommand):
    help = "Consulta el estado de autorización SRI de una clave de acceso."

    def add_arguments(self, parser) -> None:
        parser.add_argument("clave", help="Clave de acceso de 49 dígitos")
        parser.add_argument(
            "--ambiente",
            choices=["pruebas", "produccion"],
            help="Ambiente SRI. Por defecto se toma el dígito de ambiente de la clave.",
        )

    def handle(self, *args: Any, **options: Any) -> None:
        clave: str = options["clave"].strip()
        ambiente: Optional[str] = options.get("ambiente")

        validacion = validar_clave_acceso(clave)
        if not validacion.valida:
            raise CommandError("Clave de acceso inválida: " + "; ".join(validacion.errores))

        ambiente = ambiente or validacion.componentes.ambiente

        try:
            resultado = SRIClient(ambiente).autorizar_comprobante(clave)
        except ErrorTransporteSRI as exc:
            raise CommandError(str(exc)) from exc

        self.stdout.write(f"Estado: {resultado.estado.value}")
        if resultado.numero_autorizacion:
            self.stdout.write(f"Número de autorización: {resultado.numero_autorizacion}")
        if resultado.fecha_autorizacion:
            self.stdout.write(f"Fecha de autorización: {resultado.fecha_autorizacion}")
        for mensaje in resultado.mensajes:
            self.stdout.write(f"  - {mensaje}")

        if resultado.autorizado:
            self.stdout.write(self.style.SUCCESS("✓ Comprobante AUTORIZADO."))
        elif resultado.terminal:
            self.stdout.write(self.style.ERROR("✗ Comprobante NO AUTORIZADO."))
        else:
            self.stdout.write(
                self.style.WARNING("Comprobante aún sin autorización definitiva. Consulte más tarde.")
            )
