"""
Test helpers for applications using paranoid models.

Usage:
    from paranoia_toolkit.testing import assert_paranoid

    def test_invoice_is_paranoid():
        assert_paranoid(Invoice)
        assert_paranoid(AuditEntry, expected=False)
"""

from typing import Any

from .soft_delete.policy import policy_for


def is_paranoid_model(obj: Any) -> bool:
    """True when a model class or instance has the soft delete capability."""
    return policy_for(obj) is not None


def assert_paranoid(obj: Any, expected: bool = True) -> None:
    """
    Assert that a model class or instance is (or is not) paranoid.

    Args:
        obj: Model class or instance
        expected: Whether the model should be paranoid

    Raises:
        AssertionError: With a message naming the model
    """
    name = obj.__name__ if isinstance(obj, type) else type(obj).__name__
    actual = is_paranoid_model(obj)
    if expected and not actual:
        raise AssertionError(f"Expected {name} to act as paranoid")
    if not expected and actual:
        raise AssertionError(f"Expected {name} not to act as paranoid")
