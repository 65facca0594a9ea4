"""Group lifecycle and project allocation services."""

from .allocation_facade import AllocationFacade
from .application_allocator import ApplicationAllocator, FacultyApplicationView
from .code_generator import CodeGenerator
from .group_registry import GroupRegistry
from .notifications import (
    LoggingNotificationDispatcher,
    build_dispatcher,
    dispatch_safely,
)
from .role_resolver import EffectiveRole, RoleResolver

__all__ = [
    "AllocationFacade",
    "ApplicationAllocator",
    "FacultyApplicationView",
    "CodeGenerator",
    "GroupRegistry",
    "RoleResolver",
    "EffectiveRole",
    "LoggingNotificationDispatcher",
    "build_dispatcher",
    "dispatch_safely",
]
