"""Bootstrap module for application initialization.

This module provides:
- Application factory (create_app)
- Lifecycle management (lifespan)
- Route registration (register_routes)
- The listener and its startup sequence (ApplicationServer, run)
"""

from apphost.bootstrap.app_factory import create_app
from apphost.bootstrap.lifespan import lifespan
from apphost.bootstrap.routes import register_routes
from apphost.bootstrap.server import ApplicationServer, run

__all__ = ["ApplicationServer", "create_app", "lifespan", "register_routes", "run"]
