"""
Fabshop Services.

Transaction-owning entry points for the presentation layer.
"""

from fabshop_services.startup import bootstrap
from fabshop_services.workshop import WorkshopService

__all__ = ["WorkshopService", "bootstrap"]
