from __future__ import annotations

from typing import Optional
import logging

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url

from .config import Settings, get_settings


logger = logging.getLogger(__name__)


def get_engine(settings: Optional[Settings] = None) -> Optional[Engine]:
    """Crea el engine SQLAlchemy del sink relacional.

    Returns:
        Engine listo para usar, o None si DATABASE_URL no está configurada.
    """
    settings = settings or get_settings()
    if not settings.database_url:
        logger.warning("[DB] DATABASE_URL not set - relational sink disabled")
        return None

    url = make_url(settings.database_url)

    # Log básico de parámetros de conexión (sin contraseña)
    logger.info(
        "[DB] Creating engine driver=%s host=%s port=%s db=%s user=%s",
        url.drivername,
        url.host,
        url.port,
        url.database,
        url.username,
    )

    if url.get_backend_name() == "sqlite":
        engine = create_engine(url, future=True)
    else:
        engine = create_engine(
            url,
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,
            pool_recycle=300,
            future=True,
        )

    # Test de conexión: deja en logs si el servicio realmente llega a la BD
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("[DB] Connection test OK")
    except Exception:
        logger.exception("[DB] Connection test FAILED")

    return engine
