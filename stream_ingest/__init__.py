"""Ingesta multi-fuente de streams de obra con despacho por prioridad."""

__version__ = "0.4.0"
