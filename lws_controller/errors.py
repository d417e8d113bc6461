"""Errors raised by the LWS controller core."""

from kubernetes.client.exceptions import ApiException


class LWSControllerError(Exception):
    """Base class for controller errors."""

    pass


class MissingLabelError(LWSControllerError):
    """Raised when a pod lacks one of the labels identifying its group."""

    pass


class PodNameParseError(LWSControllerError):
    """Raised when a worker pod name does not end with an ordinal."""

    pass


class TemplateError(LWSControllerError):
    """Raised when a pod template is malformed or cannot be converted for apply."""

    pass


class TopologyError(LWSControllerError):
    """Raised when a node is missing the exclusive topology label."""

    pass


class WatchError(LWSControllerError):
    """Raised when a resource watch stops and cannot be resumed."""

    pass


class RevisionNotFoundError(LWSControllerError):
    """Raised when no controller revision matches a template hash."""

    pass


class RevisionConflictError(LWSControllerError):
    """Raised when more than one controller revision matches a template hash."""

    pass


def is_not_found(error: Exception) -> bool:
    """Return True if error is a 404 from the API server."""
    return isinstance(error, ApiException) and error.status == 404


def is_already_exists(error: Exception) -> bool:
    """Return True if a create call failed because the name is taken."""
    return isinstance(error, ApiException) and error.status == 409
