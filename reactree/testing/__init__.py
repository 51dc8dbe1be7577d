"""Schemas for the external test-status feed."""

from reactree.testing.test_result import ErrorCategory, TestResult

__all__ = ["ErrorCategory", "TestResult"]
