"""
categorizer - resumable, chunked word-classification job engine.

The package is split the same way the runtime is:

- ``categorizer.core``       errors, logging, settings, matching, ORM, gateway, repositories
- ``categorizer.execution``  job engine, chunking, metrics, typed events
- ``categorizer.oracle``     classification oracle protocol and implementations
- ``categorizer.api``        FastAPI app with SSE streaming and control endpoints
- ``categorizer.cli``        Typer CLI
"""

__version__ = "0.4.0"
