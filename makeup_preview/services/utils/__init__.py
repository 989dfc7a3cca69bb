from .http_client import http_client

__all__ = ["http_client"]
