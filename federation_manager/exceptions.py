"""Errors raised by the federation controllers.

Every error has a short ``message`` and optional ``details`` holding the
underlying cause, usually the API server's reply. Errors about one member
cluster also name it in ``cluster``.
"""


class FederationError(Exception):
    """Base of the errors the controllers raise and handle."""

    def __init__(self, message: str, details: str | None = None):
        self.message = message
        self.details = details
        super().__init__(message)

    def __str__(self) -> str:
        return self.format_message()

    def format_message(self) -> str:
        """Render the message with its cause, if any, on the following line."""
        if not self.details:
            return self.message
        return f"{self.message}\n  caused by: {self.details}"


class KubernetesError(FederationError):
    """A host cluster API call failed."""


class ConfigurationError(FederationError):
    """The controller's own configuration cannot be loaded."""


class ResolutionError(FederationError):
    """A load balancer hostname did not resolve."""


class ClusterError(FederationError):
    """An error about one member cluster."""

    def __init__(self, cluster: str, message: str, details: str | None = None):
        self.cluster = cluster
        super().__init__(message, details)

    def format_message(self) -> str:
        return f"[{self.cluster}] {super().format_message()}"


class ClusterClientError(ClusterError):
    """A member cluster's API could not be reached or returned an error."""


class ConfigMalformedError(ClusterError):
    """A member cluster's endpoint or credentials are unusable."""
