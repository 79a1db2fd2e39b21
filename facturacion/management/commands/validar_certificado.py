# facturacion/management/commands/validar_certificado.py
# -*- coding: utf-8 -*-
"""
Valida un certificado de firma electrónica (.p12) antes de usarlo con el SRI:

- Contraseña correcta y clave RSA
- Vigencia (desde / hasta) y días restantes
- Alerta si expira en 30 días o menos

Uso:

    python manage.py validar_certificado /ruta/firma.p12 --password=XXXX
"""
from __future__ import annotations

import getpass
from typing import Any

from django.core.management.base import BaseCommand, CommandError

from facturacion.services.sri.exceptions import CertificadoInvalidoError
from facturacion.services.sri.signer import CredencialFirma, validar_certificado


class Command(BaseCommand):
    help = "Verifica que un certificado .p12 se pueda abrir y esté vigente."

    def add_arguments(self, parser) -> None:
        parser.add_argument("ruta", help="Ruta al archivo .p12 / .pfx")
        parser.add_argument(
            "--password",
            dest="password",
            help="Contraseña del certificado. Si se omite, se solicita por consola.",
        )

    def handle(self, *args: Any, **options: Any) -> None:
        password = options.get("password")
        if password is None:
            password = getpass.getpass("Contraseña del certificado: ")

        try:
            credencial = CredencialFirma.from_file(options["ruta"], password)
        except CertificadoInvalidoError as exc:
            raise CommandError(str(exc)) from exc

        info = validar_certificado(credencial.p12, credencial.password)

        if info.sujeto:
            self.stdout.write(f"INFO: Sujeto: {info.sujeto}")
            self.stdout.write(f"INFO: Emisor: {info.emisor}")
            self.stdout.write(f"INFO: Serie: {info.numero_serie}")
            self.stdout.write(f"INFO: Válido desde {info.no_antes} hasta {info.no_despues}")

        if not info.valido:
            raise CommandError(f"Certificado no utilizable: {info.error}")

        if info.alerta_expiracion:
            self.stdout.write(
                self.style.WARNING(
                    f"⚠ El certificado expira en {info.dias_para_expirar} días. Renuévelo pronto."
                )
            )

        self.stdout.write(
            self.style.SUCCESS(
                f"✓ Certificado vigente ({info.dias_para_expirar} días restantes)."
            )
        )
