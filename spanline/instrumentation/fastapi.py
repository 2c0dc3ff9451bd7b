"""
FastAPI middleware helpers for tracing HTTP requests with the SDK.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable

from spanline import bootstrap
from spanline.instrumentation.http_server import start_server_span
from spanline.tracer.span import SpanStatus

REQUEST_CONTEXT_ATTR = "spanline_context"


def install_http_middleware(app: Any, *, tracer_name: str = "spanline.fastapi") -> None:
    """
    Attach an HTTP middleware that wraps each FastAPI request in a server span.

    - Continues the trace and baggage from the incoming headers
    - Records method/path and response status code
    - Stores the request Context on ``request.state.spanline_context`` so
      handlers can parent their own spans and propagate downstream
    """

    @app.middleware("http")
    async def tracing_middleware(request, call_next: Callable[[Any], Awaitable[Any]]):  # type: ignore
        # Looked up per request so the middleware follows init()/stop_tracing().
        tracer = bootstrap.get_tracer(tracer_name)
        attrs = {
            "http.method": request.method,
            "http.target": request.url.path,
        }
        span, parent_ctx = start_server_span(
            tracer, f"{request.method} {request.url.path}", request.headers, attributes=attrs
        )
        async with span:
            setattr(request.state, REQUEST_CONTEXT_ATTR, span.to_context(parent_ctx))
            response = await call_next(request)
            span.set_attribute("http.status_code", response.status_code)
            if response.status_code >= 500:
                span.set_status(SpanStatus.ERROR, f"HTTP {response.status_code}")
            return response

    return None
