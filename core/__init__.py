# core/__init__.py
from __future__ import annotations

# Carga la app Celery al iniciar Django para que @shared_task la use
from .celery import app as celery_app

__all__ = ("celery_app",)
