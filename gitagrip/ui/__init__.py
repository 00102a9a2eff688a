"""Terminal UI for gitagrip."""

from .app import GitagripApp

__all__ = ["GitagripApp"]
