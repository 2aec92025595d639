"""Exceptions raised by the portal services.

Endpoints translate them into HTTP responses; in-process callers catch them
at the call site and show the message to the user.
"""
from typing import Optional


class PortalError(Exception):
    """Base class for every failure a user action can end with."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(PortalError):
    """A required field is missing or malformed; nothing was persisted."""


class DuplicateEmailError(PortalError):
    def __init__(self, email: str):
        super().__init__("This email is already registered")
        self.email = email


class NotFoundError(PortalError):
    def __init__(self, kind: str, item_id: str):
        super().__init__(f"{kind} not found: {item_id}")
        self.kind = kind
        self.item_id = item_id


class BackendError(PortalError):
    """The remote backend failed; the operation was not applied."""

    def __init__(self, action: str, cause: Optional[BaseException] = None):
        detail = str(cause) if cause is not None else "unknown error"
        super().__init__(f"Error while {action}: {detail}")
        self.action = action
        self.cause = cause


class AccessDeniedError(PortalError):
    pass


class PlanRequiredError(PortalError):
    """A locked tab was selected. The user is offered the plan tab instead."""

    def __init__(self, tab: str, shortcut: str):
        super().__init__(f"Generate your study plan to unlock '{tab}'")
        self.tab = tab
        self.shortcut = shortcut
