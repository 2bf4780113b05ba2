"""HTTP controllers dispatched by the router.

Controllers are intentionally thin: they read the request, delegate to
repositories and services, and return JSON, CSV or HTML responses. Actions that read a
body are coroutines and hand their database work to the threadpool; the
rest are plain functions, which the router runs in the threadpool itself.
Path parameters arrive through `request.path_params` and the signed-in user through `request.session`.
Failures are raised as `HTTPException` and rendered by FastAPI.
"""

import logging
from typing import Optional, Type

from fastapi import HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from pydantic import BaseModel, ValidationError
from sqlmodel import Session
from starlette.concurrency import run_in_threadpool

from . import models, repositories, services
from .schemas import (
    AccountIn,
    BranchUpdateIn,
    LoginIn,
    MatchIn,
    PasswordUpdateIn,
    RoleUpdateIn,
    StudentIn,
    TutorIn,
)
from .utils.clone import deep_clone

logger = logging.getLogger("tutormatch.controllers")

AUTOCOMPLETE_LIMIT = 10
USERNAME_MAX_LENGTH = 64


async def read_payload(request: Request, schema: Type[BaseModel]) -> BaseModel:
    """Parse a JSON or form-encoded body into `schema`; 400 on bad input."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            data = await request.json()
        except ValueError:
            # JSONDecodeError and UnicodeDecodeError
            raise HTTPException(status_code=400, detail="malformed JSON body")
    else:
        data = dict(await request.form())
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="request body must be an object")
    try:
        return schema.model_validate(data)
    except ValidationError as e:
        err = e.errors()[0]
        field = ".".join(str(p) for p in err.get("loc", ())) or "body"
        raise HTTPException(status_code=400, detail=f"{field}: {err.get('msg')}")


def path_id(request: Request, name: str = "id") -> Optional[int]:
    """Integer path parameter, `None` when absent; 400 when not a number."""
    raw = request.path_params.get(name)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{name} must be an integer")


def session_user(request: Request) -> dict:
    user = request.session.get("user")
    if not user:
        raise HTTPException(status_code=401, detail="not signed in")
    return user


def require_admin(request: Request) -> dict:
    user = session_user(request)
    if user.get("role") != models.ROLE_ADMIN:
        raise HTTPException(status_code=403, detail="administrator role required")
    return user


class AuthenticationController:
    """Sign in/out and account administration."""

    def __init__(self, engine):
        self.engine = engine

    async def login(self, request: Request) -> Response:
        """Verify credentials and attach the account to the session."""
        payload = await read_payload(request, LoginIn)
        user = await run_in_threadpool(self._authenticate, payload)
        request.session["user"] = deep_clone(user)
        logger.info("'%s' signed in", user["username"])
        if not request.headers.get("content-type", "").startswith("application/json"):
            # HTML form sign-in
            return RedirectResponse("/dashboard", status_code=302)
        return JSONResponse({"user": user})

    def _authenticate(self, payload: LoginIn) -> dict:
        with Session(self.engine) as db:
            account = services.AuthService(db).authenticate(payload.username, payload.password)
            if not account:
                logger.info("failed login for '%s'", payload.username)
                raise HTTPException(status_code=401, detail="invalid credentials")
            return account.public()

    def logout(self, request: Request) -> Response:
        request.session.clear()
        return RedirectResponse("/login", status_code=302)

    async def update_password(self, request: Request) -> Response:
        user = session_user(request)
        payload = await read_payload(request, PasswordUpdateIn)
        await run_in_threadpool(self._change_password, user["id"], payload)
        return JSONResponse({"status": "ok"})

    def _change_password(self, account_id: int, payload: PasswordUpdateIn) -> None:
        with Session(self.engine) as db:
            account = repositories.AccountRepository(db).get(account_id)
            if not account:
                raise HTTPException(status_code=404, detail="account not found")
            try:
                services.AuthService(db).change_password(account, payload.current_password, payload.new_password)
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))

    def list_users(self, request: Request) -> Response:
        require_admin(request)
        with Session(self.engine) as db:
            accounts = repositories.AccountRepository(db).list()
            return JSONResponse([a.public() for a in accounts])

    async def update_role(self, request: Request) -> Response:
        require_admin(request)
        payload = await read_payload(request, RoleUpdateIn)
        return await run_in_threadpool(self._update_account, request, payload.username, role=payload.role)

    async def update_branch(self, request: Request) -> Response:
        require_admin(request)
        payload = await read_payload(request, BranchUpdateIn)
        return await run_in_threadpool(self._update_account, request, payload.username, branch=payload.branch)

    def _update_account(self, request: Request, username: str, **changes) -> Response:
        with Session(self.engine) as db:
            repo = repositories.AccountRepository(db)
            account = repo.get_by_username(username)
            if not account:
                raise HTTPException(status_code=404, detail="account not found")
            for key, value in changes.items():
                setattr(account, key, value)
            updated = repo.save(account).public()
        # keep the session copy in step when admins edit themselves
        if request.session["user"]["id"] == updated["id"]:
            request.session["user"] = deep_clone(updated)
        return JSONResponse(updated)

    async def create_account(self, request: Request) -> Response:
        """Create an account named by `:username` or, failing that, the body."""
        require_admin(request)
        payload = await read_payload(request, AccountIn)
        username = request.path_params.get("username") or payload.username
        if not username:
            raise HTTPException(status_code=400, detail="username required")
        if len(username) > USERNAME_MAX_LENGTH:
            raise HTTPException(status_code=400, detail=f"username longer than {USERNAME_MAX_LENGTH} characters")
        return await run_in_threadpool(self._register, username, payload)

    def _register(self, username: str, payload: AccountIn) -> Response:
        with Session(self.engine) as db:
            try:
                account = services.AuthService(db).register(username, payload.password, payload.role, payload.branch)
            except ValueError as e:
                raise HTTPException(status_code=409, detail=str(e))
            logger.info("account '%s' created with role %s", account.username, account.role)
            return JSONResponse(account.public(), status_code=201)

    def delete_account(self, request: Request) -> Response:
        user = require_admin(request)
        username = request.path_params.get("username")
        if not username:
            raise HTTPException(status_code=400, detail="username required")
        if username == user["username"]:
            raise HTTPException(status_code=400, detail="cannot delete the signed-in account")
        with Session(self.engine) as db:
            repo = repositories.AccountRepository(db)
            account = repo.get_by_username(username)
            if not account:
                raise HTTPException(status_code=404, detail="account not found")
            repo.delete(account)
        logger.info("account '%s' deleted by '%s'", username, user["username"])
        return JSONResponse({"deleted": username})


class _PersonController:
    """Lookup and creation shared by the tutor and student controllers."""
    repository: Type[repositories._PersonRepository]
    schema: Type[BaseModel]
    model: type
    label: str

    def __init__(self, engine):
        self.engine = engine

    def _get(self, request: Request) -> Response:
        person_id = path_id(request)
        with Session(self.engine) as db:
            repo = self.repository(db)
            if person_id is None:
                return JSONResponse(jsonable_encoder(repo.list()))
            person = repo.get(person_id)
            if not person:
                raise HTTPException(status_code=404, detail=f"{self.label} not found")
            return JSONResponse(jsonable_encoder(person))

    async def _create(self, request: Request) -> Response:
        payload = await read_payload(request, self.schema)
        return await run_in_threadpool(self._insert, payload)

    def _insert(self, payload: BaseModel) -> Response:
        with Session(self.engine) as db:
            person = self.repository(db).create(self.model(**payload.model_dump()))
            return JSONResponse(jsonable_encoder(person), status_code=201)

    def autocomplete(self, request: Request) -> Response:
        """Name suggestions for the `:name` prefix."""
        prefix = request.path_params.get("name", "").strip()
        if not prefix:
            return JSONResponse([])
        with Session(self.engine) as db:
            found = self.repository(db).search_by_name(prefix, limit=AUTOCOMPLETE_LIMIT)
            return JSONResponse([{"id": p.id, "name": f"{p.first_name} {p.last_name}"} for p in found])


class TutorController(_PersonController):
    repository = repositories.TutorRepository
    schema = TutorIn
    model = models.Tutor
    label = "tutor"

    def get_tutor(self, request: Request) -> Response:
        return self._get(request)

    async def create_tutor(self, request: Request) -> Response:
        return await self._create(request)

    def exit_tutor(self, request: Request) -> Response:
        """Take a tutor out of the program and dissolve their active matches."""
        tutor_id = path_id(request)
        if tutor_id is None:
            raise HTTPException(status_code=400, detail="id required")
        with Session(self.engine) as db:
            repo = repositories.TutorRepository(db)
            tutor = repo.get(tutor_id)
            if not tutor:
                raise HTTPException(status_code=404, detail="tutor not found")
            match_repo = repositories.MatchRepository(db)
            active = match_repo.list_active_for_tutor(tutor_id)
            for m in active:
                match_repo.dissolve(m, commit=False)
            tutor.active = False
            tutor = repo.save(tutor)
            logger.info("tutor %s exited; %d matches dissolved", tutor_id, len(active))
            return JSONResponse({"tutor": jsonable_encoder(tutor), "dissolved_matches": len(active)})


class StudentController(_PersonController):
    repository = repositories.StudentRepository
    schema = StudentIn
    model = models.Student
    label = "student"

    def get_student(self, request: Request) -> Response:
        return self._get(request)

    async def create_student(self, request: Request) -> Response:
        return await self._create(request)


class MatchController:
    """List, create, update and dissolve tutor/student matches."""

    def __init__(self, engine):
        self.engine = engine

    def get_matches(self, request: Request) -> Response:
        match_id = path_id(request)
        with Session(self.engine) as db:
            repo = repositories.MatchRepository(db)
            if match_id is None:
                return JSONResponse(jsonable_encoder(repo.list()))
            match = repo.get(match_id)
            if not match:
                raise HTTPException(status_code=404, detail="match not found")
            return JSONResponse(jsonable_encoder(match))

    async def add_or_update(self, request: Request) -> Response:
        """Create a match, or re-pair an existing one when `:id` is given."""
        match_id = path_id(request)
        payload = await read_payload(request, MatchIn)
        return await run_in_threadpool(self._save, match_id, payload)

    def _save(self, match_id: Optional[int], payload: MatchIn) -> Response:
        with Session(self.engine) as db:
            tutor = repositories.TutorRepository(db).get(payload.tutor_id)
            student = repositories.StudentRepository(db).get(payload.student_id)
            if not tutor:
                raise HTTPException(status_code=404, detail="tutor not found")
            if not student:
                raise HTTPException(status_code=404, detail="student not found")
            if not tutor.active or not student.active:
                raise HTTPException(status_code=400, detail="cannot match an inactive tutor or student")
            repo = repositories.MatchRepository(db)
            existing = repo.find_active_pair(payload.tutor_id, payload.student_id)
            if match_id is None:
                if existing:
                    raise HTTPException(status_code=409, detail="tutor and student are already matched")
                match = repo.create(models.Match(tutor_id=payload.tutor_id, student_id=payload.student_id))
                return JSONResponse(jsonable_encoder(match), status_code=201)
            match = repo.get(match_id)
            if not match:
                raise HTTPException(status_code=404, detail="match not found")
            if match.status != models.MATCH_ACTIVE:
                raise HTTPException(status_code=400, detail="dissolved matches cannot be changed")
            if existing and existing.id != match.id:
                raise HTTPException(status_code=409, detail="tutor and student are already matched")
            match.tutor_id = payload.tutor_id
            match.student_id = payload.student_id
            return JSONResponse(jsonable_encoder(repo.save(match)))

    def dissolve_match(self, request: Request) -> Response:
        match_id = path_id(request)
        if match_id is None:
            raise HTTPException(status_code=400, detail="id required")
        with Session(self.engine) as db:
            repo = repositories.MatchRepository(db)
            match = repo.get(match_id)
            if not match:
                raise HTTPException(status_code=404, detail="match not found")
            if match.status == models.MATCH_ACTIVE:
                match = repo.dissolve(match)
            return JSONResponse(jsonable_encoder(match))


class DataExportController:
    """CSV downloads of the main tables."""

    def __init__(self, engine):
        self.engine = engine

    def _csv(self, filename: str, render) -> Response:
        with Session(self.engine) as db:
            body = render(services.ExportService(db))
        return Response(
            content=body,
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    def export_students(self, request: Request) -> Response:
        return self._csv("students.csv", lambda svc: svc.students_csv())

    def export_tutors(self, request: Request) -> Response:
        return self._csv("tutors.csv", lambda svc: svc.tutors_csv())

    def export_matches(self, request: Request) -> Response:
        return self._csv("matches.csv", lambda svc: svc.matches_csv())


PAGE_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
  <meta charset="UTF-8" />
  <title>{title} | Tutor Match</title>
  <link rel="stylesheet" href="/css/site.css" />
</head>
<body data-page="{page}"{extra}>
  <h1>{title}</h1>
  {body}{script}
</body>
</html>
"""

# pages with a script under protected/js
PAGE_SCRIPTS = frozenset({"dashboard"})

LOGIN_FORM = """<form method="post" action="/account/login">
    <label>Username <input name="username" autocomplete="username" /></label>
    <label>Password <input name="password" type="password" autocomplete="current-password" /></label>
    <button type="submit">Sign in</button>
  </form>"""

NAV = """<nav>
    <a href="/dashboard">Dashboard</a> <a href="/students">Students</a> <a href="/tutors">Tutors</a>
    <a href="/matching">Matching</a> <a href="/export">Export</a> <a href="/account">Account</a>
    <a href="/logout">Sign out</a>
  </nav>"""


class HomeController:
    """Front-end pages. The markup is a shell; scripts under /js fill it in."""

    def _render(self, page: str, title: str, body: str = NAV, record_id: Optional[int] = None) -> Response:
        extra = f' data-id="{record_id}"' if record_id is not None else ""
        script = f'\n  <script src="/js/{page}.js"></script>' if page in PAGE_SCRIPTS else ""
        return HTMLResponse(PAGE_TEMPLATE.format(title=title, page=page, body=body, extra=extra, script=script))

    def login(self, request: Request) -> Response:
        return self._render("login", "Sign in", body=LOGIN_FORM)

    def dashboard(self, request: Request) -> Response:
        return self._render("dashboard", "Dashboard")

    def account(self, request: Request) -> Response:
        return self._render("account", "Account")

    def admin(self, request: Request) -> Response:
        return self._render("administration", "Administration")

    def student_form(self, request: Request) -> Response:
        return self._render("student-form", "New student")

    def tutor_form(self, request: Request) -> Response:
        return self._render("tutor-form", "New tutor")

    def students(self, request: Request) -> Response:
        return self._render("students", "Students", record_id=path_id(request))

    def tutors(self, request: Request) -> Response:
        return self._render("tutors", "Tutors", record_id=path_id(request))

    def matching(self, request: Request) -> Response:
        return self._render("matching", "Matching")

    def export(self, request: Request) -> Response:
        return self._render("export", "Export")
