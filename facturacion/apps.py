# facturacion/apps.py
from __future__ import annotations

from django.apps import AppConfig


class FacturacionConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "facturacion"
    verbose_name = "Facturación Electrónica SRI"
