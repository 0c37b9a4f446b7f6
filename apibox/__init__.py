"""apibox — caching reverse proxy for upstream HTTP APIs."""

__version__ = "2.0.0"
