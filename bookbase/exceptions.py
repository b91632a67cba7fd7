class ConflictError(ValueError):
    """The request is well-formed but clashes with the current state."""


class AuthenticationError(Exception):
    pass


class ExternalServiceError(Exception):
    pass
