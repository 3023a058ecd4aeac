"""Network server for the engine: middleware pipeline and routes."""

from fabengine.server.app import create_server, versioned_redirect_target

__all__ = ["create_server", "versioned_redirect_target"]
