"""HTTP surface: Prometheus exposition and service status"""

from .app import create_app

__all__ = ["create_app"]
