"""
Error taxonomy for the access core.

CycleError, NotFoundError, ConflictError and AccessDenied are client errors.
InvariantViolation signals a defect in index maintenance and must never be
swallowed; it aborts the enclosing transaction.
"""


class DocAccessError(Exception):
    """Base exception for docaccess errors"""
    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class CycleError(DocAccessError):
    """A page move or group nesting would create a cycle"""


class NotFoundError(DocAccessError):
    """A referenced page, group, user, membership or grant does not exist"""
    def __init__(self, entity: str, identifier):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} not found: {identifier}")


class ConflictError(DocAccessError):
    """Duplicate membership/nesting edge or a cross-workspace page operation"""


class InvariantViolation(DocAccessError):
    """A postcondition of an index-maintaining operation failed"""
    def __init__(self, message: str):
        super().__init__(f"Invariant violation: {message}")


class AccessDenied(DocAccessError):
    """Effective permission is below the level an operation requires"""
    def __init__(self, message: str = "Insufficient permissions", required=None, actual=None):
        self.required = required
        self.actual = actual
        super().__init__(message)


def invariant(condition: bool, message: str):
    """Raise InvariantViolation when condition is false"""
    if not condition:
        raise InvariantViolation(message)
