"""Resource handlers for the supported providers."""

from provisioner.providers.base import ProviderRegistry, ResourceHandler

__all__ = ["ProviderRegistry", "ResourceHandler"]
