"""Transports sending built requests to the backend."""

from replica.transport.base import BaseTransport
from replica.transport.http import HttpTransport, normalize_response
from replica.transport.request import BUILDERS, Request, build_request

__all__ = [
    "BUILDERS",
    "BaseTransport",
    "HttpTransport",
    "Request",
    "build_request",
    "normalize_response",
]
