"""Backend wiring shared by the routers."""

import logging

from fastapi import Request

from pageeditor import config
from pageeditor.services.block_store import BlockStore
from pageeditor.services.editor import SessionRegistry
from pageeditor.services.gateway import Gateway, InMemoryGateway, RestGateway
from pageeditor.services.procedures import LOCAL_FUNCTIONS

logger = logging.getLogger(__name__)


def create_gateway() -> Gateway:
    """Return the REST gateway when a backend URL is configured, else an in-memory one."""
    if config.GATEWAY_URL:
        logger.info("Using hosted backend at %s", config.GATEWAY_URL)
        return RestGateway(config.GATEWAY_URL, config.GATEWAY_KEY, timeout=config.GATEWAY_TIMEOUT)
    logger.warning("GATEWAY_URL not set – using the in-memory backend; data is lost on restart")
    return InMemoryGateway(functions=LOCAL_FUNCTIONS)


def get_gateway(request: Request) -> Gateway:
    return request.app.state.gateway


def get_store(request: Request) -> BlockStore:
    return request.app.state.store


def get_sessions(request: Request) -> SessionRegistry:
    return request.app.state.sessions
