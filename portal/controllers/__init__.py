"""FastAPI routers acting as controllers in the MVC architecture."""

from . import applications, groups, roles

__all__ = ["applications", "groups", "roles"]
