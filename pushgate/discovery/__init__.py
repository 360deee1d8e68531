"""Test container discovery."""

from pushgate.discovery.discoverer import DiscoveryError, IsolatedTestDiscoverer

__all__ = ["DiscoveryError", "IsolatedTestDiscoverer"]
