"""Helpers that connect HTTP clients and servers to the tracing pipeline."""

from spanline.instrumentation.http_client import inject_headers as inject_http_headers
from spanline.instrumentation.http_server import extract_parent_context, start_server_span
from spanline.instrumentation.fastapi import install_http_middleware

__all__ = [
    "inject_http_headers",
    "extract_parent_context",
    "start_server_span",
    "install_http_middleware",
]
