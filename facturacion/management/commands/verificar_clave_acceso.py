# facturacion/management/commands/verificar_clave_acceso.py
# -*- coding: utf-8 -*-
from __future__ import annotations

from typing import Any

from django.core.management.base import BaseCommand, CommandError

from facturacion.services.sri.clave_acceso import TipoComprobante, validar_clave_acceso


class Command(BaseCommand):
    help = "Verifica una clave de acceso SRI (49 dígitos) y muestra sus componentes."

    def add_arguments(self, parser) -> None:
        parser.add_argument("clave", help="Clave de acceso de 49 dígitos")

    def handle(self, *args: Any, **options: Any) -> None:
        validacion = validar_clave_acceso(options["clave"])
        comp = validacion.componentes

        if comp is not None:
            try:
                tipo = f"{comp.tipo_comprobante} ({TipoComprobante(comp.tipo_comprobante).name})"
            except ValueError:
                tipo = comp.tipo_comprobante

            self.stdout.write(f"Fecha emisión:    {comp.fecha:%d/%m/%Y}")
            self.stdout.write(f"Tipo comprobante: {tipo}")
            self.stdout.write(f"RUC:              {comp.ruc}")
            self.stdout.write(f"Ambiente:         {comp.ambiente}")
            self.stdout.write(f"Serie:            {comp.establecimiento}-{comp.punto_emision}")
            self.stdout.write(f"Secuencial:       {comp.secuencial}")
            self.stdout.write(f"Código numérico:  {comp.codigo_numerico}")
            self.stdout.write(f"Tipo emisión:     {comp.tipo_emision}")
            self.stdout.write(f"Dígito verif.:    {comp.digito_verificador}")

        if not validacion.valida:
            for error in validacion.errores:
                self.stderr.write(f"  - {error}")
            raise CommandError("Clave de acceso inválida.")

        self.stdout.write(self.style.SUCCESS("✓ Clave de acceso válida."))
