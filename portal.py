"""Application state and access control for the portal shell.

`AppState` holds everything the shell needs to decide what to render: the
session, the authentication step, the active tab and whether the admin
panel is open. `AccessController` owns that state and is the only thing
that changes it.
"""
import logging
import os
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional

from errors import AccessDeniedError, PlanRequiredError, ValidationError
from events import Signal
from schemas import User
from storage import LocalStorage
from students import StudentDirectory

logger = logging.getLogger(__name__)

SESSION_KEY = "teacherpoli_user"
DEFAULT_ADMIN_EMAILS = "admin@teacherpoli.com"

TABS = ("onboarding", "ai-assistant", "teacher-poli", "resources", "community", "settings")
DEFAULT_TAB = "onboarding"
PLAN_TAB = "ai-assistant"
PLAN_GATED_TABS = ("teacher-poli", "resources")

MIN_PASSWORD_LENGTH = 6

SUPPORT_OPTIONS = [
    {"title": "Email", "description": "Answer within 24h", "url": "mailto:suporte@teacherpoli.com"},
    {"title": "WhatsApp", "description": "Immediate support", "url": "https://wa.me/5511999999999"},
]


class AuthStep(str, Enum):
    LOGIN = "login"
    # never entered; no transition leads here
    VERIFICATION = "verification"
    PASSWORD = "password"
    AUTHENTICATED = "authenticated"


def completion_key(email: str) -> str:
    return f"user_completed_{email}"


def parse_admin_emails(raw: Optional[str]) -> FrozenSet[str]:
    return frozenset(e.strip().lower() for e in (raw or "").split(",") if e.strip())


def admin_emails_from_env() -> FrozenSet[str]:
    return parse_admin_emails(os.getenv("ADMIN_EMAILS", DEFAULT_ADMIN_EMAILS))


def locked_tabs_for(session: Optional[User], is_admin: bool) -> List[str]:
    """Tabs the user can see but not enter yet."""
    if session is None or is_admin:
        return []
    if session.first_access and not session.has_generated_plan:
        return list(PLAN_GATED_TABS)
    return []


class AppState:
    def __init__(self, storage: LocalStorage, session_key: str = SESSION_KEY):
        self.storage = storage
        self.session_key = session_key
        self.session: Optional[User] = self._load_session()
        self.auth_step = AuthStep.AUTHENTICATED if self.session else AuthStep.LOGIN
        self.active_tab = DEFAULT_TAB
        self.current_email = ""
        self.show_admin_panel = False
        self.support_requested = Signal("openSupportModal")

    def _load_session(self) -> Optional[User]:
        raw = self.storage.get_json(self.session_key)
        if not raw:
            return None
        try:
            return User.model_validate(raw)
        except ValueError as e:
            logger.warning("Discarding stored session: %s", e)
            return None

    def save_session(self, session: User) -> None:
        self.session = session
        self.storage.set_json(self.session_key, session.dump())

    def clear_session(self) -> None:
        self.session = None
        self.storage.remove_item(self.session_key)

    def has_completed_onboarding(self, email: str) -> bool:
        return bool(self.storage.get_json(completion_key(email), False))

    def mark_onboarding_completed(self, email: str) -> None:
        self.storage.set_json(completion_key(email), True)


class AccessController:
    def __init__(
        self,
        state: AppState,
        directory: StudentDirectory,
        admin_emails: Optional[Iterable[str]] = None,
    ):
        self.state = state
        self.directory = directory
        if admin_emails is None:
            self.admin_emails = admin_emails_from_env()
        else:
            self.admin_emails = frozenset(e.lower() for e in admin_emails)
        if self.state.session and self.is_admin():
            self.state.show_admin_panel = True

    @property
    def session(self) -> Optional[User]:
        return self.state.session

    @property
    def auth_step(self) -> AuthStep:
        return self.state.auth_step

    @property
    def active_tab(self) -> str:
        return self.state.active_tab

    @property
    def authenticated(self) -> bool:
        return self.state.session is not None and self.state.auth_step == AuthStep.AUTHENTICATED

    def is_admin(self, email: Optional[str] = None) -> bool:
        if email is None:
            email = self.state.session.email if self.state.session else ""
        return email.lower() in self.admin_emails

    # Authentication

    def needs_password(self, email: str) -> bool:
        return not self.is_admin(email) and not self.state.has_completed_onboarding(email)

    def _start_session(self, email: str, first_access: bool) -> User:
        admin = self.is_admin(email)
        session = User(
            name=email.split("@")[0],
            email=email,
            is_verified=True,
            has_password=True,
            has_generated_plan=admin,
            first_access=first_access and not admin,
        )
        self.state.save_session(session)
        self.state.auth_step = AuthStep.AUTHENTICATED
        self.state.current_email = ""
        self.state.show_admin_panel = admin
        logger.info("Signed in %s (admin=%s)", email, admin)
        return session

    async def login(self, email: str) -> AuthStep:
        email = email.strip().lower()
        if not email:
            raise ValidationError("Email is required")
        if not self.is_admin(email) and not await self.directory.check_email_exists(email):
            raise AccessDeniedError("No active access found for this email")
        if self.needs_password(email):
            self.state.current_email = email
            self.state.auth_step = AuthStep.PASSWORD
            return self.state.auth_step
        self._start_session(email, first_access=not self.state.has_completed_onboarding(email))
        return self.state.auth_step

    def create_password(self, password: str, confirmation: str) -> User:
        if self.state.auth_step != AuthStep.PASSWORD or not self.state.current_email:
            raise ValidationError("Sign in with your email first")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must have at least {MIN_PASSWORD_LENGTH} characters")
        if password != confirmation:
            raise ValidationError("Passwords do not match")
        return self._start_session(self.state.current_email, first_access=True)

    def back_to_login(self) -> None:
        self.state.auth_step = AuthStep.LOGIN
        self.state.current_email = ""

    def logout(self) -> None:
        if self.state.session:
            logger.info("Signed out %s", self.state.session.email)
        self.state.clear_session()
        self.state.active_tab = DEFAULT_TAB
        self.state.auth_step = AuthStep.LOGIN
        self.state.current_email = ""
        self.state.show_admin_panel = False

    # Navigation

    def locked_tabs(self) -> List[str]:
        return locked_tabs_for(self.state.session, self.is_admin())

    def select_tab(self, tab: str) -> str:
        if tab not in TABS:
            raise ValidationError(f"Unknown tab: {tab}")
        if tab in self.locked_tabs():
            logger.info("Locked tab selected: %s", tab)
            raise PlanRequiredError(tab, PLAN_TAB)
        self.state.active_tab = tab
        return tab

    def go_to_plan(self) -> str:
        self.state.active_tab = PLAN_TAB
        return PLAN_TAB

    def should_show_welcome(self) -> bool:
        session = self.state.session
        return (
            self.authenticated
            and not self.is_admin()
            and session.first_access
            and not session.has_generated_plan
        )

    def view(self) -> str:
        if not self.authenticated:
            return "password" if self.state.auth_step == AuthStep.PASSWORD else "login"
        if self.is_admin() and self.state.show_admin_panel:
            return "admin"
        return "student"

    def open_admin_panel(self) -> None:
        if not self.is_admin():
            raise AccessDeniedError("Administrator access required")
        self.state.show_admin_panel = True

    def close_admin_panel(self) -> None:
        self.state.show_admin_panel = False

    # Onboarding progress

    def plan_generated(self) -> Optional[User]:
        session = self.state.session
        if session is None:
            return None
        self.state.mark_onboarding_completed(session.email)
        updated = session.model_copy(update={"has_generated_plan": True, "first_access": False})
        self.state.save_session(updated)
        logger.info("Study plan generated for %s", session.email)
        return updated

    def request_support(self) -> List[Dict[str, str]]:
        self.state.support_requested.emit()
        return SUPPORT_OPTIONS
