"""
Connector construction from configuration.
"""

import logging

from .bulking import BulkingIndexConnector
from .connector import IndexConnector, QdrantIndexConnector
from ..models.config import ConnectorConfig

logger = logging.getLogger(__name__)


def create_connector(config: ConnectorConfig) -> IndexConnector:
    """
    Build the configured connector strategy.

    Args:
        config: Connector configuration; kind "bulking" wraps the eager
            Qdrant connector in a batching queue

    Returns:
        Ready to use connector (connections open lazily)
    """
    eager = QdrantIndexConnector.from_config(config.qdrant)
    if config.kind == "bulking":
        return BulkingIndexConnector.from_config(eager, config.bulking)

    logger.info("Using eager index connector")
    return eager
