# retina_core/errors.py


class RetinaError(Exception):
    """Base class for errors raised by the decision core."""


class ConfigurationError(RetinaError, ValueError):
    """
    Caller input violates a contract: missing distribution parameters,
    runs < 1, unknown modes, malformed experiment configs.

    Always raised before any sampling begins.
    """


class DomainError(RetinaError, ValueError):
    """A utility model was evaluated outside its valid domain."""
