"""HTTP surface of the FlowForge cache service."""

from flowforge.api.app import create_app

__all__ = ["create_app"]
