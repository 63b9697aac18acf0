"""
Exception taxonomy for the Jane document service.

Store, index and tool code raise these; the protocol dispatcher maps them
onto JSON-RPC error codes.
"""


class JaneError(Exception):
    """Base class for all domain errors."""


class InvalidParamsError(JaneError):
    """Raised when caller-supplied parameters are unusable."""


class NotFoundError(JaneError):
    """Raised when a document or category does not exist."""


class AlreadyExistsError(JaneError):
    """Raised when creating a document whose (category, path) is taken."""


class MalformedDocumentError(JaneError):
    """Raised when a document file has a broken or incomplete frontmatter block."""


class PathSecurityError(JaneError):
    """Raised when a path resolves outside its category directory."""


class StorageError(JaneError):
    """Raised when the filesystem fails underneath the store."""


class IndexCorruptionError(JaneError):
    """Raised when the search index and the store disagree."""
