"""Health, readiness and statistics endpoints for the stream connector."""

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from . import __version__
from .connector import StreamConnector
from .core.errors import ChannelNotFound

router = APIRouter(tags=["streams"])


def get_connector(request: Request) -> StreamConnector:
    return request.app.state.connector


@router.get("/health")
def health():
    """Liveness probe: ok while the process is running."""
    return {"status": "ok"}


@router.get("/ready")
def ready(connector: StreamConnector = Depends(get_connector)):
    """Readiness probe: al menos un canal conectado."""
    snapshot = connector.get_statistics()
    if not connector.is_initialized or snapshot.active_channels == 0:
        raise HTTPException(status_code=503, detail="not ready")
    return {"status": "ready", "active_channels": snapshot.active_channels}


@router.get("/statistics")
def statistics(connector: StreamConnector = Depends(get_connector)):
    result = connector.get_statistics().to_dict()
    result["supervisor"] = connector.supervisor.stats
    return result


@router.get("/channels")
def channels(connector: StreamConnector = Depends(get_connector)):
    """Canales registrados con el estado de su conexión."""
    items = []
    for channel in connector.registry.list_channels():
        item = channel.to_dict()
        item["connection"] = connector.transport(channel.name).connection.to_dict()
        item["pending"] = connector.pending(channel.name)
        items.append(item)
    return {"channels": items}


@router.get("/channels/{name}/latest")
def channel_latest(name: str, connector: StreamConnector = Depends(get_connector)):
    try:
        connector.registry.get_channel(name)
    except ChannelNotFound:
        raise HTTPException(status_code=404, detail="channel not found")

    message = connector.latest(name)
    if message is None:
        raise HTTPException(status_code=404, detail="no buffered message")
    return message.to_dict()


@router.get("/channels/{name}/recent")
def channel_recent(name: str, limit: int = 50, connector: StreamConnector = Depends(get_connector)):
    try:
        connector.registry.get_channel(name)
    except ChannelNotFound:
        raise HTTPException(status_code=404, detail="channel not found")

    messages = connector.recent(name)
    if limit > 0:
        messages = messages[-limit:]
    return {"channel": name, "messages": [m.to_dict() for m in messages]}


@router.get("/metrics")
def metrics():
    """Prometheus exposition format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


def create_app(connector: StreamConnector) -> FastAPI:
    app = FastAPI(title="Construction Stream Ingest", version=__version__)
    app.state.connector = connector
    app.include_router(router)
    return app
