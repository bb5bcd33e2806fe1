"""
REST API layer for cronspine.

Provides a FastAPI application factory with the check-in endpoint and a
few read endpoints over the monitor store. All check-in logic lives in
``cronspine.monitors``; this package handles only HTTP transport concerns:
serialisation, error mapping, and request context.

Quick start::

    from cronspine.api import create_app

    app = create_app()  # ready for uvicorn

Tags:
    cronspine, api, REST, FastAPI, transport-layer

Doc-Types:
    api-reference
"""

from cronspine.api.app import create_app

__all__ = ["create_app"]
