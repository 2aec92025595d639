import os
import logging
import secrets
from typing import Optional, Dict, Any, Iterable

from fastapi import FastAPI, HTTPException, Depends, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from pymongo.database import Database

from assistant import StudyPlanAssistant, TEMPLATES
from content import ContentLibrary
from database import db
from errors import (
    PortalError,
    ValidationError,
    DuplicateEmailError,
    NotFoundError,
    AccessDeniedError,
    PlanRequiredError,
    BackendError,
)
from portal import AppState, AccessController, SESSION_KEY, TABS, admin_emails_from_env
from schemas import (
    User,
    LoginBody,
    PasswordBody,
    StudentBody,
    StudentCreate,
    StatusBody,
    MessageBody,
    VideoUpdateBody,
    PopupUpdateBody,
    BonusBody,
    LessonBody,
    QuizAnswersBody,
)
from storage import LocalStorage
from students import StudentDirectory, PurchaseVerifier

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)

app = FastAPI(title="Teacher Poli Portal API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def session_key(token: str) -> str:
    return f"{SESSION_KEY}:{token}"


class PortalClient:
    """Shell state of one signed-in browser, identified by its bearer token."""

    def __init__(self, portal: "Portal", token: str):
        self.token = token
        self.state = AppState(portal.storage, session_key(token))
        self.controller = AccessController(self.state, portal.directory, portal.admin_emails)
        self.assistant = StudyPlanAssistant(self.controller, delay=portal.delay)


class Portal:
    """Shared stores plus one PortalClient per bearer token.

    Students and content are shared by every client. Session, tabs and the
    assistant conversation belong to a single client.
    """

    def __init__(
        self,
        storage: LocalStorage,
        database: Optional[Database] = None,
        admin_emails: Optional[Iterable[str]] = None,
        verifier: Optional[PurchaseVerifier] = None,
        delay: Optional[float] = None,
    ):
        self.storage = storage
        self.directory = StudentDirectory.create(storage, database, verifier=verifier)
        self.content = ContentLibrary(storage)
        self.admin_emails = frozenset(e.lower() for e in admin_emails) if admin_emails is not None else admin_emails_from_env()
        self.delay = delay
        self.clients: Dict[str, PortalClient] = {}

    def open_client(self) -> PortalClient:
        token = secrets.token_urlsafe(32)
        client = PortalClient(self, token)
        self.clients[token] = client
        return client

    def get_client(self, token: str) -> Optional[PortalClient]:
        client = self.clients.get(token)
        if client is None and self.storage.get_item(session_key(token)) is not None:
            # session persisted by an earlier process
            client = PortalClient(self, token)
            if not client.controller.authenticated:
                return None
            self.clients[token] = client
        return client

    def close_client(self, token: str) -> None:
        client = self.clients.pop(token, None)
        if client is not None:
            client.state.clear_session()
        else:
            self.storage.remove_item(session_key(token))


def build_portal() -> Portal:
    storage = LocalStorage.from_env()
    logger.info("Local storage file: %s", storage.path)
    return Portal(storage, db, verifier=PurchaseVerifier.from_env())


app.state.portal = build_portal()


# Utilities

def _http_error(e: PortalError) -> HTTPException:
    if isinstance(e, ValidationError):
        return HTTPException(status_code=400, detail=e.message)
    if isinstance(e, DuplicateEmailError):
        return HTTPException(status_code=409, detail=e.message)
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=e.message)
    if isinstance(e, AccessDeniedError):
        return HTTPException(status_code=403, detail=e.message)
    if isinstance(e, PlanRequiredError):
        return HTTPException(status_code=423, detail={"message": e.message, "tab": e.tab, "shortcut": e.shortcut})
    if isinstance(e, BackendError):
        return HTTPException(status_code=502, detail=e.message)
    return HTTPException(status_code=500, detail=e.message)


def _shell(client: PortalClient) -> Dict[str, Any]:
    controller = client.controller
    session = controller.session
    return {
        "step": controller.auth_step.value,
        "view": controller.view(),
        "user": session.dump() if session and controller.authenticated else None,
        "is_admin": controller.authenticated and controller.is_admin(),
        "active_tab": controller.active_tab,
        "locked_tabs": controller.locked_tabs(),
        "show_welcome": controller.should_show_welcome(),
    }


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    return authorization.split(" ", 1)[1].strip() or None


# Auth helpers

def get_portal(request: Request) -> Portal:
    return request.app.state.portal


def get_client(authorization: Optional[str] = Header(None), portal: Portal = Depends(get_portal)) -> PortalClient:
    token = _bearer(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Missing token")
    client = portal.get_client(token)
    if client is None:
        raise HTTPException(status_code=401, detail="Invalid session")
    return client


def get_current_user(client: PortalClient = Depends(get_client)) -> User:
    if not client.controller.authenticated:
        raise HTTPException(status_code=401, detail="Not signed in")
    return client.controller.session


def require_admin(current: User = Depends(get_current_user), client: PortalClient = Depends(get_client)) -> User:
    if not client.controller.is_admin():
        raise HTTPException(status_code=403, detail="Insufficient permissions")
    return current


@app.get("/")
def root():
    return {"message": "Teacher Poli Portal API is running"}


@app.get("/test")
def test_database(portal: Portal = Depends(get_portal)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "student_backend": portal.directory.backend_name,
        "local_storage": str(portal.storage.path) if portal.storage.path else "memory",
        "collections": []
    }
    try:
        if db is not None:
            response["database"] = "✅ Available"
            response["collections"] = db.list_collection_names()
            response["database"] = "✅ Connected & Working"
    except Exception as e:
        response["database"] = f"⚠️ Error: {str(e)[:100]}"
    return response


# Auth routes
@app.post("/auth/login")
async def login(body: LoginBody, authorization: Optional[str] = Header(None), portal: Portal = Depends(get_portal)):
    token = _bearer(authorization)
    client = portal.get_client(token) if token else None
    opened = client is None
    if opened:
        client = portal.open_client()
    try:
        await client.controller.login(str(body.email))
    except PortalError as e:
        if opened:
            portal.close_client(client.token)
        raise _http_error(e)
    return {**_shell(client), "token": client.token}


@app.post("/auth/password")
def create_password(body: PasswordBody, client: PortalClient = Depends(get_client)):
    try:
        client.controller.create_password(body.password, body.confirmation)
    except PortalError as e:
        raise _http_error(e)
    return {**_shell(client), "token": client.token}


@app.post("/auth/back")
def back_to_login(client: PortalClient = Depends(get_client)):
    client.controller.back_to_login()
    return _shell(client)


@app.post("/auth/logout")
def logout(client: PortalClient = Depends(get_client), portal: Portal = Depends(get_portal)):
    client.controller.logout()
    portal.close_client(client.token)
    return {"status": "ok"}


@app.get("/auth/me")
def me(current: User = Depends(get_current_user), client: PortalClient = Depends(get_client)):
    return _shell(client)


# Shell
@app.get("/tabs")
def list_tabs(current: User = Depends(get_current_user), client: PortalClient = Depends(get_client)):
    locked = client.controller.locked_tabs()
    return {
        "active": client.controller.active_tab,
        "items": [{"id": t, "locked": t in locked} for t in TABS],
    }


@app.post("/tabs/plan-shortcut")
def plan_shortcut(current: User = Depends(get_current_user), client: PortalClient = Depends(get_client)):
    return {"active": client.controller.go_to_plan()}


@app.post("/tabs/{tab}")
def select_tab(tab: str, current: User = Depends(get_current_user), client: PortalClient = Depends(get_client)):
    try:
        return {"active": client.controller.select_tab(tab)}
    except PortalError as e:
        raise _http_error(e)


@app.post("/admin/panel/open")
def open_admin_panel(current: User = Depends(require_admin), client: PortalClient = Depends(get_client)):
    client.controller.open_admin_panel()
    return _shell(client)


@app.post("/admin/panel/close")
def close_admin_panel(current: User = Depends(require_admin), client: PortalClient = Depends(get_client)):
    client.controller.close_admin_panel()
    return _shell(client)


@app.post("/support")
def request_support(current: User = Depends(get_current_user), client: PortalClient = Depends(get_client)):
    return {"items": client.controller.request_support()}


# Assistant
@app.get("/assistant/messages")
def list_messages(current: User = Depends(get_current_user), client: PortalClient = Depends(get_client)):
    return {"items": [m.dump() for m in client.assistant.messages], "loading": client.assistant.loading}


@app.post("/assistant/messages")
async def send_message(body: MessageBody, current: User = Depends(get_current_user), client: PortalClient = Depends(get_client)):
    try:
        reply = await client.assistant.send_message(body.content)
    except PortalError as e:
        raise _http_error(e)
    return {"reply": reply.dump(), "plan": client.assistant.plan.dump(), "shell": _shell(client)}


@app.get("/assistant/templates")
def list_templates(current: User = Depends(get_current_user)):
    items = []
    for i, t in enumerate(TEMPLATES):
        items.append({**t, "prompt": StudyPlanAssistant.template_prompt(i)})
    return {"items": items}


@app.get("/assistant/plan")
def get_plan(current: User = Depends(get_current_user), client: PortalClient = Depends(get_client)):
    plan = client.assistant.plan
    if plan is None:
        raise HTTPException(status_code=404, detail="No study plan generated yet")
    return plan.dump()


@app.get("/assistant/plan/download", response_class=PlainTextResponse)
def download_plan(current: User = Depends(get_current_user), client: PortalClient = Depends(get_client)):
    try:
        text = client.assistant.render_plan()
    except PortalError as e:
        raise HTTPException(status_code=404, detail=e.message)
    return PlainTextResponse(
        text,
        headers={"Content-Disposition": 'attachment; filename="study-plan-30-days.txt"'},
    )


# Onboarding
@app.get("/onboarding/videos")
def list_videos(current: User = Depends(get_current_user), portal: Portal = Depends(get_portal)):
    return {"items": [v.dump() for v in portal.content.videos.get()]}


@app.post("/onboarding/videos/{video_id}/complete")
def complete_video(video_id: str, current: User = Depends(get_current_user), portal: Portal = Depends(get_portal)):
    try:
        return portal.content.mark_video_completed(video_id).dump()
    except PortalError as e:
        raise _http_error(e)


@app.get("/popups")
def list_popups(current: User = Depends(get_current_user), portal: Portal = Depends(get_portal)):
    return {"items": [p.dump() for p in portal.content.popups.get()]}


# Bonuses
@app.get("/bonuses")
def list_bonuses(current: User = Depends(get_current_user), portal: Portal = Depends(get_portal)):
    return {"items": [b.dump() for b in portal.content.bonuses.get()]}


@app.get("/bonuses/{bonus_id}")
def get_bonus(bonus_id: str, current: User = Depends(get_current_user), portal: Portal = Depends(get_portal)):
    try:
        bonus = portal.content.get_bonus(bonus_id)
        progress = portal.content.bonus_progress(bonus_id)
    except PortalError as e:
        raise _http_error(e)
    return {**bonus.dump(), "progress": progress}


@app.post("/bonuses/{bonus_id}/lessons/{lesson_id}/complete")
def complete_lesson(bonus_id: str, lesson_id: str, current: User = Depends(get_current_user), portal: Portal = Depends(get_portal)):
    try:
        return portal.content.complete_lesson(bonus_id, lesson_id).dump()
    except PortalError as e:
        raise _http_error(e)


@app.post("/bonuses/{bonus_id}/lessons/{lesson_id}/quiz")
def grade_quiz(bonus_id: str, lesson_id: str, body: QuizAnswersBody, current: User = Depends(get_current_user), portal: Portal = Depends(get_portal)):
    try:
        return portal.content.grade_quiz(bonus_id, lesson_id, body.answers)
    except PortalError as e:
        raise _http_error(e)


# Admin: students
@app.get("/admin/students/stats")
async def student_stats(current: User = Depends(require_admin), portal: Portal = Depends(get_portal)):
    try:
        stats = await portal.directory.stats()
    except PortalError as e:
        raise _http_error(e)
    return stats.dump()


@app.get("/admin/students")
async def list_students(q: Optional[str] = None, current: User = Depends(require_admin), portal: Portal = Depends(get_portal)):
    try:
        if q:
            items = await portal.directory.search(q)
        else:
            items = await portal.directory.list()
    except PortalError as e:
        raise _http_error(e)
    return {"items": [s.dump() for s in items]}


@app.post("/admin/students")
async def add_student(body: StudentBody, current: User = Depends(require_admin), portal: Portal = Depends(get_portal)):
    data = StudentCreate(name=body.name, email=str(body.email), notes=body.notes or "", added_by=current.email)
    try:
        student = await portal.directory.add(data)
    except PortalError as e:
        raise _http_error(e)
    return student.dump()


@app.patch("/admin/students/{student_id}/status")
async def set_student_status(student_id: str, body: StatusBody, current: User = Depends(require_admin), portal: Portal = Depends(get_portal)):
    try:
        return (await portal.directory.set_status(student_id, body.status)).dump()
    except PortalError as e:
        raise _http_error(e)


@app.post("/admin/students/{student_id}/toggle")
async def toggle_student_status(student_id: str, body: StatusBody, current: User = Depends(require_admin), portal: Portal = Depends(get_portal)):
    # body carries the status currently shown to the admin
    try:
        return (await portal.directory.toggle_status(student_id, body.status)).dump()
    except PortalError as e:
        raise _http_error(e)


@app.delete("/admin/students/{student_id}")
async def remove_student(student_id: str, current: User = Depends(require_admin), portal: Portal = Depends(get_portal)):
    try:
        await portal.directory.remove(student_id)
    except PortalError as e:
        raise _http_error(e)
    return {"status": "deleted"}


# Admin: onboarding content
@app.put("/admin/onboarding/videos/{video_id}")
def update_video(video_id: str, body: VideoUpdateBody, current: User = Depends(require_admin), portal: Portal = Depends(get_portal)):
    try:
        return portal.content.update_video(video_id, body).dump()
    except PortalError as e:
        raise _http_error(e)


@app.put("/admin/popups/{popup_id}")
def update_popup(popup_id: str, body: PopupUpdateBody, current: User = Depends(require_admin), portal: Portal = Depends(get_portal)):
    try:
        return portal.content.update_popup(popup_id, body).dump()
    except PortalError as e:
        raise _http_error(e)


# Admin: bonuses
@app.post("/admin/bonuses")
def create_bonus(body: BonusBody, current: User = Depends(require_admin), portal: Portal = Depends(get_portal)):
    return portal.content.create_bonus(body).dump()


@app.put("/admin/bonuses/{bonus_id}")
def update_bonus(bonus_id: str, body: BonusBody, current: User = Depends(require_admin), portal: Portal = Depends(get_portal)):
    try:
        return portal.content.update_bonus(bonus_id, body).dump()
    except PortalError as e:
        raise _http_error(e)


@app.delete("/admin/bonuses/{bonus_id}")
def delete_bonus(bonus_id: str, current: User = Depends(require_admin), portal: Portal = Depends(get_portal)):
    try:
        portal.content.delete_bonus(bonus_id)
    except PortalError as e:
        raise _http_error(e)
    return {"status": "deleted"}


@app.post("/admin/bonuses/{bonus_id}/lessons")
def create_lesson(bonus_id: str, body: LessonBody, current: User = Depends(require_admin), portal: Portal = Depends(get_portal)):
    try:
        return portal.content.create_lesson(bonus_id, body).dump()
    except PortalError as e:
        raise _http_error(e)


@app.put("/admin/bonuses/{bonus_id}/lessons/{lesson_id}")
def update_lesson(bonus_id: str, lesson_id: str, body: LessonBody, current: User = Depends(require_admin), portal: Portal = Depends(get_portal)):
    try:
        return portal.content.update_lesson(bonus_id, lesson_id, body).dump()
    except PortalError as e:
        raise _http_error(e)


@app.delete("/admin/bonuses/{bonus_id}/lessons/{lesson_id}")
def delete_lesson(bonus_id: str, lesson_id: str, current: User = Depends(require_admin), portal: Portal = Depends(get_portal)):
    try:
        portal.content.delete_lesson(bonus_id, lesson_id)
    except PortalError as e:
        raise _http_error(e)
    return {"status": "deleted"}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
