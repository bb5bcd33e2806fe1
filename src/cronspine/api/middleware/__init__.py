"""API middleware package.

Manifesto:
    Cross-cutting concerns (request IDs, timing, error mapping) belong
    in middleware so routers stay focused on check-in handling.

Tags:
    cronspine, api, middleware, cross-cutting

Doc-Types:
    api-reference
"""
