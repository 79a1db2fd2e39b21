# facturacion/tests/test_clave_acceso.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import datetime

from django.test import SimpleTestCase

from facturacion.services.sri.clave_acceso import (
    Ambiente,
    TipoComprobante,
    descomponer_clave_acceso,
    extraer_clave_acceso,
    generar_clave_acceso,
    generar_codigo_numerico,
    modulo11,
    validar_clave_acceso,
)
from facturacion.services.sri.exceptions import DocumentoMalformadoError
from facturacion.tests.factories import RUC, clave_factura, factura_xml


class Modulo11Tests(SimpleTestCase):
    def test_ejemplo_ficha_tecnica(self) -> None:
        # 3*2 + 3*3 + 5*4 + 1*5 + 6*6 + 2*7 + 1*2 + 4*3 = 104 -> 11 - (104 % 11) = 6
        self.assertEqual(modulo11("41261533"), 6)

    def test_resultado_11_se_convierte_en_0(self) -> None:
        self.assertEqual(modulo11("0"), 0)

    def test_resultado_10_se_convierte_en_1(self) -> None:
        # 6*2 = 12 -> 12 % 11 = 1 -> 11 - 1 = 10
        self.assertEqual(modulo11("6"), 1)

    def test_rechaza_caracteres_no_numericos(self) -> None:
        with self.assertRaises(ValueError):
            modulo11("12A4")
        with self.assertRaises(ValueError):
            modulo11("")


class GenerarClaveAccesoTests(SimpleTestCase):
    def test_ejemplo_factura_pruebas(self) -> None:
        clave = generar_clave_acceso("05072024", "01", "1790011223001", "1", "001", "001", "000000001")

        self.assertEqual(len(clave), 49)
        self.assertTrue(clave.isdigit())
        self.assertEqual(clave[-1], str(modulo11(clave[:48])))

    def test_campos_en_su_posicion(self) -> None:
        clave = generar_clave_acceso(
            datetime.date(2024, 7, 5),
            TipoComprobante.NOTA_CREDITO,
            RUC,
            Ambiente.PRODUCCION,
            1,
            2,
            345,
            codigo_numerico="87654321",
        )

        self.assertEqual(clave[0:8], "05072024")
        self.assertEqual(clave[8:10], "04")
        self.assertEqual(clave[10:23], RUC)
        self.assertEqual(clave[23], "2")
        self.assertEqual(clave[24:30], "001002")
        self.assertEqual(clave[30:39], "000000345")
        self.assertEqual(clave[39:47], "87654321")
        self.assertEqual(clave[47], "1")

    def test_misma_entrada_misma_clave(self) -> None:
        args = ("05072024", "01", RUC, "1", "001", "001", "000000001")
        self.assertEqual(
            generar_clave_acceso(*args, codigo_numerico="12345678"),
            generar_clave_acceso(*args, codigo_numerico="12345678"),
        )

    def test_fecha_con_barras_equivale_a_ddmmaaaa(self) -> None:
        self.assertEqual(
            generar_clave_acceso("05/07/2024", "01", RUC, "1", "001", "001", "1", codigo_numerico="1"),
            generar_clave_acceso("05072024", "01", RUC, "1", "001", "001", "1", codigo_numerico="1"),
        )

    def test_claves_generadas_siempre_validas(self) -> None:
        for secuencial in range(1, 60):
            clave = generar_clave_acceso("31122023", "07", RUC, "2", "002", "010", secuencial)
            self.assertTrue(validar_clave_acceso(clave).valida, clave)

    def test_entradas_invalidas(self) -> None:
        casos = [
            ("31022024", "01", RUC, "1", "001", "001", "1"),  # fecha inexistente
            ("5072024", "01", RUC, "1", "001", "001", "1"),
            ("05072024", "02", RUC, "1", "001", "001", "1"),  # tipo no soportado
            ("05072024", "01", "179001122300", "1", "001", "001", "1"),
            ("05072024", "01", RUC, "3", "001", "001", "1"),
            ("05072024", "01", RUC, "1", "1234", "001", "1"),
            ("05072024", "01", RUC, "1", "001", "001", "1234567890"),
        ]
        for args in casos:
            with self.subTest(args=args):
                with self.assertRaises(ValueError):
                    generar_clave_acceso(*args)

    def test_codigo_numerico_aleatorio(self) -> None:
        codigo = generar_codigo_numerico()
        self.assertEqual(len(codigo), 8)
        self.assertTrue(codigo.isdigit())


class ValidarClaveAccesoTests(SimpleTestCase):
    def test_clave_valida_con_componentes(self) -> None:
        validacion = validar_clave_acceso(clave_factura())

        self.assertTrue(validacion.valida)
        self.assertEqual(validacion.errores, [])
        self.assertEqual(validacion.componentes.ruc, RUC)
        self.assertEqual(validacion.componentes.fecha, datetime.date(2024, 7, 5))
        self.assertEqual(validacion.componentes.serie, "001001")

    def test_digito_verificador_alterado(self) -> None:
        clave = clave_factura()
        alterada = clave[:48] + str((int(clave[48]) + 1) % 10)

        validacion = validar_clave_acceso(alterada)

        self.assertFalse(validacion.valida)
        self.assertIn("Dígito verificador", validacion.errores[0])

    def test_longitud_incorrecta_no_lanza(self) -> None:
        for clave in (None, "", "123", clave_factura()[:48], clave_factura() + "0"):
            with self.subTest(clave=clave):
                self.assertFalse(validar_clave_acceso(clave).valida)

    def test_descomponer_rechaza_longitud(self) -> None:
        with self.assertRaises(ValueError):
            descomponer_clave_acceso("123")


class ExtraerClaveAccesoTests(SimpleTestCase):
    def test_extrae_de_factura(self) -> None:
        self.assertEqual(extraer_clave_acceso(factura_xml()), clave_factura())

    def test_ignora_namespace(self) -> None:
        xml = '<f:factura xmlns:f="urn:x"><f:infoTributaria><f:claveAcceso> 123 </f:claveAcceso></f:infoTributaria></f:factura>'
        self.assertEqual(extraer_clave_acceso(xml), "123")

    def test_documentos_malformados(self) -> None:
        casos = {
            "vacio": "",
            "xml_roto": "<factura><claveAcceso>1</factura>",
            "sin_clave": "<factura><infoTributaria/></factura>",
            "clave_vacia": "<factura><claveAcceso>  </claveAcceso></factura>",
            "clave_repetida": "<factura><claveAcceso>1</claveAcceso><claveAcceso>2</claveAcceso></factura>",
        }
        for nombre, xml in casos.items():
            with self.subTest(caso=nombre):
                with self.assertRaises(DocumentoMalformadoError):
                    extraer_clave_acceso(xml)
