from .metrics import (
    APPLICATION_DECISIONS,
    APPLICATIONS_SUBMITTED,
    DOMAIN_ERRORS,
    GROUP_CODE_COLLISIONS,
    GROUP_EVENTS,
    observe_request,
    record_decision,
    record_domain_error,
    record_group_event,
)

__all__ = [
    "APPLICATION_DECISIONS",
    "APPLICATIONS_SUBMITTED",
    "DOMAIN_ERRORS",
    "GROUP_CODE_COLLISIONS",
    "GROUP_EVENTS",
    "observe_request",
    "record_decision",
    "record_domain_error",
    "record_group_event",
]
