"""API routers package.

Manifesto:
    Each router module owns one API domain (check-ins, monitors) and
    delegates to ``cronspine.monitors`` for the actual work.

Tags:
    cronspine, api, routers, REST

Doc-Types:
    api-reference
"""
