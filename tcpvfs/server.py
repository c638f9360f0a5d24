import logging
from typing import Optional

from fastapi import FastAPI, HTTPException

from .config import Settings
from .dispatcher import VfsDispatcher
from .errors import ERR_PARAM, error_name, is_error

logger = logging.getLogger(__name__)

app = FastAPI(title="tcpvfs")
dispatcher: Optional[VfsDispatcher] = None


def get_dispatcher() -> VfsDispatcher:
    """The served dispatcher, built from the environment on first use."""
    global dispatcher
    if dispatcher is None:
        dispatcher = VfsDispatcher(Settings.from_env())
    return dispatcher


@app.get("/api/health")
def health():
    return {"status": "ok"}


@app.get("/api/descriptors")
def list_descriptors():
    return get_dispatcher().snapshot()


@app.delete("/api/descriptors/{fd}")
def close_descriptor(fd: int):
    result = get_dispatcher().close(fd)
    if result == ERR_PARAM:
        raise HTTPException(status_code=404, detail=f"Descriptor {fd} is not open")
    if is_error(result):
        raise HTTPException(status_code=500, detail=error_name(result))
    logger.info(f"Descriptor {fd} closed via API")
    return {"status": "closed"}


def configure(settings: Settings) -> VfsDispatcher:
    """Replace the served dispatcher, closing anything the old one held."""
    global dispatcher
    if dispatcher is not None:
        dispatcher.shutdown()
    dispatcher = VfsDispatcher(settings)
    return dispatcher
