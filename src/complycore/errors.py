"""Error hierarchy for complycore.

Evaluation itself never raises. These errors cover bad references from
the caller, malformed policy documents, and store failures.
"""

from __future__ import annotations


class ComplyCoreError(Exception):
    """Base class for all complycore errors."""


class UnknownReferenceError(ComplyCoreError, LookupError):
    """A caller referenced a policy or framework that does not exist."""

    kind = "reference"

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(f"Unknown {self.kind}: {identifier}")


class UnknownFrameworkError(UnknownReferenceError):
    """Requested control framework is not registered."""

    kind = "framework"


class UnknownPolicyError(UnknownReferenceError):
    """Requested policy is not in the store."""

    kind = "policy"


class PolicyValidationError(ComplyCoreError, ValueError):
    """A policy, rule or condition document is malformed."""

    def __init__(self, message: str, path: str | None = None):
        self.message = message
        self.path = path
        super().__init__(f"Validation error{f' at {path}' if path else ''}: {message}")


class StoreError(ComplyCoreError, OSError):
    """A durable store could not be read or written."""

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        super().__init__(f"{message}{f' ({path})' if path else ''}")
