# replicator/adapters/factory.py
from abc import ABC, abstractmethod
from typing import Any, Dict
from urllib.parse import urlsplit
import logging

import httpx

from .exceptions import AdapterError
from .interfaces import NodeAdapter
from .sqlite_catalog import SQLiteCatalogAdapter
from .webhdfs import WebHdfsNodeAdapter

logger = logging.getLogger(__name__)

HTTPS_PORT = 443


class NodeAdapterFactory(ABC):
    """Creates adapters for one type of site"""

    site_type: str = ""

    @abstractmethod
    def create(self, url: str, name: str) -> NodeAdapter:
        pass


class SQLiteCatalogAdapterFactory(NodeAdapterFactory):
    site_type = "sqlite"

    def create(self, url: str, name: str) -> NodeAdapter:
        path = url[len("sqlite://"):] if url.startswith("sqlite://") else url
        return SQLiteCatalogAdapter(path, name=name)


class WebHdfsNodeAdapterFactory(NodeAdapterFactory):
    site_type = "webhdfs"

    def __init__(self, connection_timeout: int = 30000, receive_timeout: int = 60000):
        """
        Args:
            connection_timeout: connect timeout in milliseconds for created clients
            receive_timeout: read timeout in milliseconds for created clients
        """
        self.connection_timeout = connection_timeout
        self.receive_timeout = receive_timeout
        logger.debug(
            f"Created a WebHdfsNodeAdapterFactory with a connection timeout of "
            f"{connection_timeout}ms and a receive timeout of {receive_timeout}ms"
        )

    def create(self, url: str, name: str) -> NodeAdapter:
        parts = urlsplit(url)
        if not parts.hostname:
            raise AdapterError(f"Failed to create adapter, invalid url: {url}")

        port = parts.port or (HTTPS_PORT if parts.scheme == "https" else 80)
        protocol = "https://" if port == HTTPS_PORT else "http://"
        base_url = f"{protocol}{parts.hostname}:{port}{parts.path}"

        timeout = httpx.Timeout(self.receive_timeout / 1000, connect=self.connection_timeout / 1000)
        return WebHdfsNodeAdapter(base_url, httpx.Client(timeout=timeout))


def get_factory(site: Dict[str, Any]) -> NodeAdapterFactory:
    """Pick and configure the factory matching a site definition"""
    site_type = site.get('type')
    if site_type == SQLiteCatalogAdapterFactory.site_type:
        return SQLiteCatalogAdapterFactory()
    if site_type == WebHdfsNodeAdapterFactory.site_type:
        return WebHdfsNodeAdapterFactory(
            connection_timeout=int(site.get('connection_timeout', 30000)),
            receive_timeout=int(site.get('receive_timeout', 60000))
        )
    raise ValueError(f"Unknown site type for {site.get('name')}: {site_type}")


def create_adapter(site: Dict[str, Any]) -> NodeAdapter:
    return get_factory(site).create(site['url'], site['name'])
