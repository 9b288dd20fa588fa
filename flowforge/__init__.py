"""FlowForge cache service: TTL cache for generated automation workflows."""

__version__ = "1.0.0"
