"""HTTP transport with bearer authentication and single-flight token refresh."""

from buildable_area.transport.client import AuthenticatedTransport, AuthProvider

__all__ = ["AuthProvider", "AuthenticatedTransport"]
