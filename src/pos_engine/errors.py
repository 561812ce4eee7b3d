"""Domain exceptions raised by the POS engine."""

from __future__ import annotations


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced bill, product, customer or session is unknown."""


class ConfirmationRequired(BusinessRuleViolation):
    """Raised when an irrecoverable action is attempted without confirmation."""


class SessionStateError(BusinessRuleViolation):
    """Raised when a cash session transition is not allowed from its state."""
