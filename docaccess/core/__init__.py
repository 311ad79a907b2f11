"""Core modules: config, database, errors"""
from .config import settings
from .database import Base, SessionLocal, engine, atomic
from .errors import (
    DocAccessError, CycleError, NotFoundError, ConflictError,
    InvariantViolation, AccessDenied, invariant
)

__all__ = [
    'settings',
    'Base', 'SessionLocal', 'engine', 'atomic',
    'DocAccessError', 'CycleError', 'NotFoundError', 'ConflictError',
    'InvariantViolation', 'AccessDenied', 'invariant',
]
