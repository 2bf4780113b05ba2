"""Route table and authentication gate.

`build_router` turns the controller set into an immutable route table and
returns a `Gate`. The gate runs an ordered tuple of stages for every
request:

1. the unprotected table (login endpoints and the `/` redirect),
2. the authentication check, which redirects sessions without a user to
   `/login`,
3. the protected table (API, exports and pages),
4. static files from the protected content directory.

Each stage returns a response to finish the request or `None` to let the
next stage run. Handler chains on a route follow the same contract, so a
guard such as the "already logged in" check on `GET /login` simply returns
`None` to hand over to the page action.

A route that matches the path but does not declare the request method
answers with its fallback, which is the 405 handler for every route
except `/`.
"""

from __future__ import annotations

import inspect
import logging
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Mapping, NamedTuple, Optional, Tuple, Union

from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, RedirectResponse, Response
from starlette.staticfiles import StaticFiles

from .errors import ConstructionError
from .utils.clone import deep_clone

logger = logging.getLogger("tutormatch.router")

Handler = Callable[[Request], Union[Awaitable[Optional[Response]], Optional[Response]]]
Stage = Callable[[Request], Awaitable[Optional[Response]]]

METHOD_NOT_ALLOWED_MESSAGE = "Non supported method."
LOGIN_PATH = "/login"
DASHBOARD_PATH = "/dashboard"

_PARAM = re.compile(r"/:(\w+)(\?)?")


def compile_pattern(pattern: str) -> re.Pattern:
    """Compile an Express-style path pattern into a regex.

    `/api/tutor/:id?` matches `/api/tutor` and `/api/tutor/7`; `:name`
    without `?` is required. Matching ignores case and tolerates one
    trailing slash. Only the last parameter may be optional.
    """
    if not pattern.startswith("/"):
        raise ConstructionError(f"route pattern must start with '/': {pattern!r}")
    params = list(_PARAM.finditer(pattern))
    parts = []
    pos = 0
    for i, m in enumerate(params):
        name, optional = m.group(1), m.group(2)
        if optional and (i != len(params) - 1 or m.end() != len(pattern)):
            raise ConstructionError(f"only a trailing parameter may be optional: {pattern!r}")
        parts.append(re.escape(pattern[pos:m.start()]))
        segment = f"/(?P<{name}>[^/]+)"
        parts.append(f"(?:{segment})?" if optional else segment)
        pos = m.end()
    tail = pattern[pos:]
    parts.append(re.escape(tail.rstrip("/")))
    return re.compile("^" + "".join(parts) + "/?$", re.IGNORECASE)


def pattern_shapes(pattern: str) -> frozenset:
    """Concrete path shapes a pattern can match, with parameter names erased.

    `/students/:id?` yields `{"/students", "/students/:"}`. Two patterns
    overlap when their shape sets intersect.
    """
    required = _PARAM.sub(lambda m: "/:" if not m.group(2) else "/:?", pattern).lower().rstrip("/")
    if required.endswith("/:?"):
        base = required[:-3]
        return frozenset({base or "/", base + "/:"})
    return frozenset({required or "/"})


@dataclass(frozen=True)
class Route:
    """One path pattern with its method to handler-chain mapping."""
    pattern: str
    methods: Mapping[str, Tuple[Handler, ...]]
    fallback: Handler
    regex: re.Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "regex", compile_pattern(self.pattern))
        object.__setattr__(self, "methods", MappingProxyType(dict(self.methods)))

    def match(self, path: str) -> Optional[dict]:
        m = self.regex.match(path)
        if m is None:
            return None
        return {k: v for k, v in m.groupdict().items() if v is not None}

    def chain_for(self, method: str) -> Tuple[Handler, ...]:
        """Handlers for `method`; HEAD borrows the GET chain."""
        if method in self.methods:
            return self.methods[method]
        if method == "HEAD" and "GET" in self.methods:
            return self.methods["GET"]
        return (self.fallback,)


class RouteTable:
    """Collects route declarations and freezes them into a tuple of `Route`s."""

    def __init__(self, name: str, fallback: Handler):
        self.name = name
        self._fallback = fallback
        self._routes: list = []
        self._seen: dict = {}

    def route(self, pattern: str, fallback: Optional[Handler] = None, **methods: Any) -> None:
        """Declare `pattern` with handlers keyed by lower-case verb.

        A value may be a single handler or a tuple forming a chain.
        """
        for shape in pattern_shapes(pattern):
            if shape in self._seen:
                raise ConstructionError(
                    f"{self.name} route {pattern!r} overlaps {self._seen[shape]!r}"
                )
        for shape in pattern_shapes(pattern):
            self._seen[shape] = pattern
        chains = {}
        for verb, handlers in methods.items():
            if not isinstance(handlers, tuple):
                handlers = (handlers,)
            chains[verb.upper()] = handlers
        self._routes.append(Route(pattern, chains, fallback or self._fallback))

    def shapes(self) -> dict:
        return dict(self._seen)

    def freeze(self) -> Tuple[Route, ...]:
        return tuple(self._routes)


async def run_chain(chain: Tuple[Handler, ...], request: Request) -> Optional[Response]:
    """Call handlers in order until one produces a response.

    Coroutine handlers are awaited; plain functions run in the threadpool
    so database and hashing work stays off the event loop.
    """
    for handler in chain:
        if inspect.iscoroutinefunction(handler):
            result = await handler(request)
        else:
            result = await run_in_threadpool(handler, request)
        if result is not None:
            return result
    return None


def table_stage(routes: Tuple[Route, ...]) -> Stage:
    """Stage that dispatches to the first route whose pattern matches."""
    async def stage(request: Request) -> Optional[Response]:
        path = request.scope["path"]
        for route in routes:
            params = route.match(path)
            if params is None:
                continue
            request.scope["path_params"] = params
            response = await run_chain(route.chain_for(request.method), request)
            if response is not None:
                return response
        return None
    return stage


def static_stage(directory) -> Stage:
    """Stage that serves files below `directory`; it always answers."""
    files = StaticFiles(directory=directory, check_dir=False)

    async def stage(request: Request) -> Optional[Response]:
        if request.method not in ("GET", "HEAD"):
            raise HTTPException(status_code=404)
        return await files.get_response(files.get_path(request.scope), request.scope)
    return stage


class Gate:
    """Runs the dispatch stages in order for each request.

    The gate is also an ASGI app, so it can be routed for every HTTP verb;
    which verbs a path accepts is decided by the route table alone.
    """

    def __init__(self, stages, unprotected: Tuple[Route, ...], protected: Tuple[Route, ...]):
        self.stages = tuple(stages)
        self.unprotected = unprotected
        self.protected = protected

    async def handle(self, request: Request) -> Response:
        for stage in self.stages:
            response = await stage(request)
            if response is not None:
                return response
        return PlainTextResponse("Not Found", status_code=404)

    async def __call__(self, scope, receive, send) -> None:
        response = await self.handle(Request(scope, receive, send))
        await response(scope, receive, send)


class Controllers(NamedTuple):
    """The controller objects the route table dispatches to."""
    home: Any
    authentication: Any
    data_export: Any
    tutor: Any
    student: Any
    match: Any


def check_disjoint(public: RouteTable, protected: RouteTable) -> None:
    """Raise ConstructionError if a path shape is declared in both tables."""
    public_shapes = public.shapes()
    for shape, pattern in protected.shapes().items():
        if shape in public_shapes:
            raise ConstructionError(
                f"route {pattern!r} is declared both {public.name} ({public_shapes[shape]!r}) and {protected.name}"
            )


def _action(controller: Any, name: str) -> Handler:
    handler = getattr(controller, name, None)
    if not callable(handler):
        raise ConstructionError(f"{type(controller).__name__} has no action {name!r}")
    return handler


def _status(status_codes: Mapping[str, int], name: str) -> int:
    try:
        return int(status_codes[name])
    except KeyError:
        raise ConstructionError(f"status code registry is missing {name}")


def build_router(status_codes: Mapping[str, int], controllers: Controllers, static_dir) -> Gate:
    """Build the route table and return the gate that dispatches over it.

    Raises ConstructionError if a status code or controller action is
    missing, or if two route patterns overlap.
    """
    method_not_allowed_code = _status(status_codes, "METHOD_NOT_ALLOWED")
    found = _status(status_codes, "FOUND")

    def redirect_to(url: str) -> Handler:
        async def redirect(request: Request) -> Response:
            return RedirectResponse(url, status_code=found)
        return redirect

    async def method_not_allowed(request: Request) -> Response:
        return PlainTextResponse(METHOD_NOT_ALLOWED_MESSAGE, status_code=method_not_allowed_code)

    async def return_user_object(request: Request) -> Response:
        user = request.session.get("user")
        if not user:
            return JSONResponse({"user": None})
        return JSONResponse({"user": deep_clone(user)})

    async def check_if_already_logged_in(request: Request) -> Optional[Response]:
        if request.session.get("user"):
            return RedirectResponse(DASHBOARD_PATH, status_code=found)
        return None

    async def require_user(request: Request) -> Optional[Response]:
        if not request.session.get("user"):
            logger.debug("no session user for %s %s; redirecting to login", request.method, request.url.path)
            return RedirectResponse(LOGIN_PATH, status_code=found)
        return None

    home = controllers.home
    auth = controllers.authentication
    export = controllers.data_export
    tutor = controllers.tutor
    student = controllers.student
    match = controllers.match

    # UNPROTECTED ROUTES
    public = RouteTable("unprotected", method_not_allowed)
    public.route("/account/login", post=_action(auth, "login"))
    public.route(LOGIN_PATH, get=(check_if_already_logged_in, _action(home, "login")))
    public.route("/", fallback=redirect_to(LOGIN_PATH))

    # PROTECTED ROUTES: only reached once require_user lets the request through
    protected = RouteTable("protected", method_not_allowed)

    # API
    protected.route("/logout", get=_action(auth, "logout"))
    protected.route("/user", get=return_user_object)
    protected.route("/api/account/password", post=_action(auth, "update_password"))
    protected.route("/api/accounts", get=_action(auth, "list_users"))
    protected.route("/api/account/role", post=_action(auth, "update_role"))
    protected.route("/api/account/branch", post=_action(auth, "update_branch"))
    protected.route(
        "/api/account/:username?",
        post=_action(auth, "create_account"),
        delete=_action(auth, "delete_account"),
    )
    protected.route(
        "/api/tutor/:id?",
        get=_action(tutor, "get_tutor"),
        delete=_action(tutor, "exit_tutor"),
    )
    protected.route("/api/student/:id?", get=_action(student, "get_student"))
    protected.route("/api/autocomplete/tutor/:name", get=_action(tutor, "autocomplete"))
    protected.route("/api/autocomplete/student/:name", get=_action(student, "autocomplete"))
    protected.route("/api/createstudent", post=_action(student, "create_student"))
    protected.route("/api/createtutor", post=_action(tutor, "create_tutor"))
    protected.route(
        "/api/matches/:id?",
        get=_action(match, "get_matches"),
        post=_action(match, "add_or_update"),
        delete=_action(match, "dissolve_match"),
    )
    protected.route("/export/students", get=_action(export, "export_students"))
    protected.route("/export/tutors", get=_action(export, "export_tutors"))
    protected.route("/export/matches", get=_action(export, "export_matches"))

    # FRONT-END
    protected.route(DASHBOARD_PATH, get=_action(home, "dashboard"))
    protected.route("/account", get=_action(home, "account"))
    protected.route("/administration", get=_action(home, "admin"))
    protected.route("/student-form", get=_action(home, "student_form"))
    protected.route("/tutor-form", get=_action(home, "tutor_form"))
    protected.route("/students/:id?", get=_action(home, "students"))
    protected.route("/tutors/:id?", get=_action(home, "tutors"))
    protected.route("/matching", get=_action(home, "matching"))
    protected.route("/export", get=_action(home, "export"))

    check_disjoint(public, protected)

    unprotected_routes = public.freeze()
    protected_routes = protected.freeze()
    gate = Gate(
        (
            table_stage(unprotected_routes),
            require_user,
            table_stage(protected_routes),
            static_stage(static_dir),
        ),
        unprotected_routes,
        protected_routes,
    )
    logger.info(
        "router built: %d unprotected routes, %d protected routes, static files from %s",
        len(unprotected_routes), len(protected_routes), static_dir,
    )
    return gate
