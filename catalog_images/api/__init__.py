from .app import create_app, status_for
from .services import ImageServices, build_services

__all__ = ["ImageServices", "build_services", "create_app", "status_for"]
