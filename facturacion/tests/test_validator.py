# facturacion/tests/test_validator.py
# -*- coding: utf-8 -*-
from __future__ import annotations

from django.test import SimpleTestCase

from facturacion.services.sri.validator import validar_estructura
from facturacion.tests.factories import factura_xml


class ValidarEstructuraTests(SimpleTestCase):
    def test_factura_completa_sin_errores(self) -> None:
        self.assertEqual(validar_estructura(factura_xml()), [])

    def test_acepta_bytes(self) -> None:
        self.assertEqual(validar_estructura(factura_xml().encode("utf-8")), [])

    def test_campo_obligatorio_vacio(self) -> None:
        xml = factura_xml().replace(
            "<nombreComercial>EMPRESA TEST</nombreComercial>",
            "<nombreComercial></nombreComercial>",
        )

        errores = validar_estructura(xml)

        self.assertEqual(errores, ["Campo obligatorio faltante o vacío: nombreComercial"])

    def test_ruc_y_clave_con_longitud_incorrecta(self) -> None:
        xml = factura_xml(clave="123").replace("<ruc>1790011223001</ruc>", "<ruc>17900112230</ruc>")

        errores = validar_estructura(xml)

        self.assertIn("RUC debe tener exactamente 13 dígitos", errores)
        self.assertIn("Clave de acceso debe tener exactamente 49 dígitos", errores)

    def test_sin_detalles(self) -> None:
        xml = factura_xml()
        inicio = xml.index("<detalles>")
        fin = xml.index("</detalles>") + len("</detalles>")

        errores = validar_estructura(xml[:inicio] + xml[fin:])

        self.assertIn("El comprobante debe contener al menos un detalle", errores)

    def test_importe_total(self) -> None:
        self.assertIn("importeTotal debe ser mayor a 0", validar_estructura(factura_xml(importe_total="0.00")))
        self.assertEqual(
            validar_estructura(factura_xml(importe_total="abc")),
            ["importeTotal no es un número válido: abc"],
        )

    def test_raiz_desconocida_y_xml_roto(self) -> None:
        errores = validar_estructura(factura_xml().replace("factura", "proforma"))
        self.assertTrue(errores[0].startswith("Elemento raíz no reconocido: proforma"))

        self.assertTrue(validar_estructura("<factura>")[0].startswith("XML mal formado"))
