"""Error taxonomy shared by the proxy, ledger and persistence layers."""


class ApiBoxError(Exception):
    """Base class for every error raised by apibox."""


class ConfigNotFound(ApiBoxError):

    def __init__(self, api_name: str, endpoint: str | None = None):
        self.api_name = api_name
        self.endpoint = endpoint
        if endpoint is None:
            msg = f"Unknown API: {api_name!r}"
        else:
            msg = f"Unknown endpoint {endpoint!r} for API {api_name!r}"
        super().__init__(msg)


class ValidationError(ApiBoxError):

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Invalid request parameters")


class TransportError(ApiBoxError):
    """Upstream failure of any kind: non-2xx status, network error, timeout."""

    def __init__(self, message: str, status: int | None = None, url: str | None = None):
        self.status = status
        self.url = url
        super().__init__(message)


class PersistenceError(ApiBoxError):
    """Write-behind or query failure against the persistent store."""
