"""API schemas package.

Manifesto:
    Pydantic schemas define the wire contract client SDKs depend on.
    Centralising them here keeps routers and the monitors package
    decoupled from serialisation details.

Tags:
    cronspine, api, schemas, pydantic, contract

Doc-Types:
    api-reference
"""

from cronspine.api.schemas.checkins import (
    CheckInAccepted,
    CheckInBody,
    MonitorConfigBody,
    ScheduleBody,
)
from cronspine.api.schemas.common import (
    ErrorDetail,
    PagedResponse,
    PageMeta,
    ProblemDetail,
    SuccessResponse,
)
from cronspine.api.schemas.monitors import MonitorSchema, RunSchema

__all__ = [
    "CheckInAccepted",
    "CheckInBody",
    "ErrorDetail",
    "MonitorConfigBody",
    "MonitorSchema",
    "PageMeta",
    "PagedResponse",
    "ProblemDetail",
    "RunSchema",
    "ScheduleBody",
    "SuccessResponse",
]
