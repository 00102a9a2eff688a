"""gitagrip: a terminal dashboard for many git repositories."""

__version__ = "0.1.0"
