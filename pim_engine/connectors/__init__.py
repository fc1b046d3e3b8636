"""
Connectors Package for the PIM Engine.

This package provides the directory clients the lifecycle core talks to:
Microsoft Graph for real tenants and an in-memory simulated directory.
"""

from typing import Any, Dict, Optional

from .base_connector import BaseDirectoryClient, ConnectorResult, MockDirectoryClient
from .graph_connector import GraphConnector
from .name_resolver import NameResolver


def get_directory_client(config: Optional[Dict[str, Any]] = None,
                         mock: bool = False) -> BaseDirectoryClient:
    """Build the directory client selected by configuration."""
    config = config or {}
    if mock or config.get("mock_mode", False):
        return MockDirectoryClient(config)
    return GraphConnector(config)


__all__ = [
    "BaseDirectoryClient",
    "ConnectorResult",
    "GraphConnector",
    "MockDirectoryClient",
    "NameResolver",
    "get_directory_client",
]
