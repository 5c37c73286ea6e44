"""
Authenticated request pipeline.

Attaches credentials, classifies failures, and recovers from credential
expiry with a single refresh-and-retry.
"""

from .classify import classify_message, classify_response
from .executor import RequestExecutor
from .transport import AiohttpTransport, HttpRequest, HttpResponse, HttpTransport

__all__ = [
    "HttpRequest",
    "HttpResponse",
    "HttpTransport",
    "AiohttpTransport",
    "RequestExecutor",
    "classify_message",
    "classify_response",
]
