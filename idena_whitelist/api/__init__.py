"""HTTP surface."""

from .http_server import WhitelistHTTPServer

__all__ = ["WhitelistHTTPServer"]
