"""
formkeeper.exceptions — Package Exceptions
===========================================

Most service operations report "not found" and guard failures through
``None`` / ``False`` return values.  Exceptions are reserved for the few
callers that must handle a failure explicitly.
"""

from __future__ import annotations


class FormKeeperError(Exception):
    """Base class for all FormKeeper errors."""


class FormNotFoundError(FormKeeperError):
    """Raised when an operation requires a form that does not exist."""

    def __init__(self, form_id: int) -> None:
        super().__init__(f"Form {form_id} not found")
        self.form_id = form_id
