"""Graph client implementations."""

from deferred_maintenance.backends.jupiterone import JupiterOneGraphClient

__all__ = ["JupiterOneGraphClient"]
