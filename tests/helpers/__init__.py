"""Test helper utilities for cipipeline tests."""

from .fake_shell import FakeShellRunner, RecordedCall
from .results import make_run_result

__all__ = ["FakeShellRunner", "RecordedCall", "make_run_result"]
