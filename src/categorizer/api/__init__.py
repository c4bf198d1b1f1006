"""
REST and SSE transport for the categorizer.

All job semantics live in ``categorizer.execution``; this package owns only
the HTTP boundary: request parsing, SSE framing, error mapping and the
process-wide gateway/classifier singletons.

Quick start::

    from categorizer.api import create_app

    app = create_app()  # ready for uvicorn

Tags:
    api, REST, SSE, FastAPI, transport-layer
"""

from categorizer.api.app import create_app

__all__ = ["create_app"]
