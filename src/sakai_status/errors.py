"""Exception types raised by the status reports."""


class StatusError(Exception):
    """Base class for every failure a report can surface."""


class MalformedObjectNameError(StatusError):
    """A bean name or bean name pattern could not be parsed."""


class InstanceNotFoundError(StatusError):
    """The bean is not (or no longer) registered."""


class AttributeNotFoundError(StatusError):
    """The bean does not expose the requested attribute."""


class CacheNotFoundError(StatusError):
    """The cache registry is unavailable or has no cache with that name."""


class CollaboratorNotFoundError(StatusError):
    """A component a report depends on is not registered."""


class UserNotDefinedError(StatusError):
    """The user directory has no user with the given id."""


class ConfigError(StatusError):
    """The configuration file or environment holds an invalid value."""
