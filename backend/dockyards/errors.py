"""Error kinds raised by dockyards components.

Components raise these and never translate them into HTTP responses
themselves; the API layer maps each kind to a status code in one place.
"""
from typing import Optional


# -----------------------------
# Base Error
# -----------------------------

class DockyardsError(Exception):
    """Base class for all dockyards errors.

    ``name`` and ``details`` are set when a user supplied name was rejected
    and end up in the response body next to the message.
    """
    status_code = 500

    def __init__(self, message: str = "", name: Optional[str] = None, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.name = name
        self.details = details


# -----------------------------
# Request Errors
# -----------------------------

class BadRequest(DockyardsError):
    """Malformed or missing input."""
    status_code = 400


class Unprocessable(DockyardsError):
    """Input was well formed but rejected by validation."""
    status_code = 422


class Conflict(DockyardsError):
    """Uniqueness violation."""
    status_code = 409


class NotFound(DockyardsError):
    status_code = 404


# -----------------------------
# Identity Errors
# -----------------------------

class Unauthenticated(DockyardsError):
    """Missing, expired or invalid token, or unknown principal."""
    status_code = 401


class Unauthorized(DockyardsError):
    """Principal is not a member of the target organization."""
    status_code = 401


class Forbidden(Unauthorized):
    """Principal is a member but may not perform the operation."""
    status_code = 403


# -----------------------------
# Collaborator / Internal Errors
# -----------------------------

class UpstreamFailure(DockyardsError):
    """The cluster manager or the cloud provider returned an error."""
    status_code = 500


class Internal(DockyardsError):
    status_code = 500


# -----------------------------
# Allocation Errors
# -----------------------------

class PrefixFull(DockyardsError):
    """Every address of the prefix is allocated."""

    def __init__(self, message: str = "prefix is full"):
        super().__init__(message)


class AddressNotAllocated(NotFound):
    def __init__(self, message: str = "address not allocated"):
        super().__init__(message)
