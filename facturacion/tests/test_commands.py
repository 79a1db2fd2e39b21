# facturacion/tests/test_commands.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import datetime
import os
import tempfile
from io import StringIO
from unittest.mock import patch

from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import SimpleTestCase

from facturacion.services.sri.client import EstadoAutorizacion, ResultadoAutorizacion
from facturacion.services.sri.exceptions import ErrorTransporteSRI
from facturacion.tests.factories import PASSWORD, RUC, clave_factura, crear_p12, p12_vigente


class VerificarClaveAccesoCommandTests(SimpleTestCase):
    def test_clave_valida(self) -> None:
        out = StringIO()

        call_command("verificar_clave_acceso", clave_factura(), stdout=out)

        salida = out.getvalue()
        self.assertIn(RUC, salida)
        self.assertIn("01 (FACTURA)", salida)
        self.assertIn("Clave de acceso válida", salida)

    def test_clave_invalida(self) -> None:
        clave = clave_factura()
        alterada = clave[:48] + str((int(clave[48]) + 1) % 10)

        with self.assertRaises(CommandError):
            call_command("verificar_clave_acceso", alterada, stdout=StringIO(), stderr=StringIO())


class ValidarCertificadoCommandTests(SimpleTestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)

    def _guardar(self, contenido: bytes) -> str:
        ruta = os.path.join(self.tmpdir.name, "firma.p12")
        with open(ruta, "wb") as f:
            f.write(contenido)
        return ruta

    def test_certificado_vigente(self) -> None:
        out = StringIO()

        call_command("validar_certificado", self._guardar(p12_vigente()), password=PASSWORD, stdout=out)

        self.assertIn("FIRMA PRUEBAS SRI", out.getvalue())
        self.assertIn("Certificado vigente", out.getvalue())

    def test_password_incorrecta(self) -> None:
        with self.assertRaises(CommandError):
            call_command(
                "validar_certificado",
                self._guardar(p12_vigente()),
                password="incorrecta",
                stdout=StringIO(),
            )

    def test_certificado_vencido(self) -> None:
        desde = datetime.datetime.now(datetime.timezone.utc) - datetime.timedelta(days=400)
        ruta = self._guardar(crear_p12(desde=desde, dias_validez=365))

        with self.assertRaises(CommandError) as ctx:
            call_command("validar_certificado", ruta, password=PASSWORD, stdout=StringIO())

        self.assertIn("vencido", str(ctx.exception))

    def test_archivo_inexistente(self) -> None:
        with self.assertRaises(CommandError):
            call_command(
                "validar_certificado",
                os.path.join(self.tmpdir.name, "no-existe.p12"),
                password=PASSWORD,
                stdout=StringIO(),
            )


@patch("facturacion.management.commands.consultar_autorizacion.SRIClient")
class ConsultarAutorizacionCommandTests(SimpleTestCase):
    def test_autorizado_usa_ambiente_de_la_clave(self, client_cls) -> None:
        clave = clave_factura(ambiente="2")
        client_cls.return_value.autorizar_comprobante.return_value = ResultadoAutorizacion(
            estado=EstadoAutorizacion.AUTORIZADO,
            clave_acceso=clave,
            numero_autorizacion=clave,
        )
        out = StringIO()

        call_command("consultar_autorizacion", clave, stdout=out)

        client_cls.assert_called_once_with("2")
        self.assertIn("AUTORIZADO", out.getvalue())
        self.assertIn(clave, out.getvalue())

    def test_ambiente_explicito(self, client_cls) -> None:
        client_cls.return_value.autorizar_comprobante.return_value = ResultadoAutorizacion(
            estado=EstadoAutorizacion.EN_PROCESO,
            clave_acceso=clave_factura(),
        )
        out = StringIO()

        call_command("consultar_autorizacion", clave_factura(), ambiente="pruebas", stdout=out)

        client_cls.assert_called_once_with("pruebas")
        self.assertIn("Consulte más tarde", out.getvalue())

    def test_error_de_red(self, client_cls) -> None:
        client_cls.return_value.autorizar_comprobante.side_effect = ErrorTransporteSRI(
            "sin conexión", origen="AUTORIZACION_NETWORK"
        )

        with self.assertRaises(CommandError):
            call_command("consultar_autorizacion", clave_factura(), stdout=StringIO())

    def test_clave_invalida_no_consulta(self, client_cls) -> None:
        with self.assertRaises(CommandError):
            call_command("consultar_autorizacion", "123", stdout=StringIO())

        client_cls.assert_not_called()
