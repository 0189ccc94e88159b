# src/llmbridge/providers/__init__.py
"""
Provider layer: catalog, prompt formatting, endpoint routing, request
building, HTTP transport, response parsing and local model server helpers.
"""

from .catalog import DEFAULT_MODEL_IDS, ProviderCatalog
from .formatting import DEFAULT_FAMILY_RULES, FamilyRule, PromptFormatter
from .local import LocalConnectionReport, LocalModelServer, ModelTestResult
from .parsing import ResponseParser, extract_stream_text
from .requests import RequestBuilder, TransportRequest
from .routing import LocalEndpoint, prefers_chat_endpoint, select_local_endpoint
from .transport import HttpTransport, Transport, TransportResponse

__all__ = [
    "DEFAULT_MODEL_IDS",
    "ProviderCatalog",
    "DEFAULT_FAMILY_RULES",
    "FamilyRule",
    "PromptFormatter",
    "LocalConnectionReport",
    "LocalModelServer",
    "ModelTestResult",
    "ResponseParser",
    "extract_stream_text",
    "RequestBuilder",
    "TransportRequest",
    "LocalEndpoint",
    "prefers_chat_endpoint",
    "select_local_endpoint",
    "HttpTransport",
    "Transport",
    "TransportResponse",
]
