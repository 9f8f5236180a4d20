"""HTTP routes that hand command batches to the dispatcher."""

from .router import configure_command_router, configure_health_router

__all__ = ["configure_command_router", "configure_health_router"]
