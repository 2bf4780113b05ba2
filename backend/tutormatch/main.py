"""FastAPI application entrypoint and composition root.

`create_app` wires the application together explicitly: it loads the
settings, builds the database engine, constructs each controller, hands
the controller set to `build_router` and registers the resulting gate,
an ASGI app, as the single catch-all route. Session cookies are provided by Starlette's
`SessionMiddleware`; the gate only reads them.

Routes (see `router.py` for the full table):
- POST /account/login, GET /login, ANY / (no session required)
- GET /logout, GET /user, /api/..., /export/... and the front-end pages
- anything else: static files from the protected directory
"""

from fastapi import FastAPI, Request
from fastapi.responses import Response
from starlette.middleware.sessions import SessionMiddleware
from sqlmodel import Session
import json
import logging
import time
import uuid
from typing import Optional

from .config import Settings
from .controllers import (
    AuthenticationController,
    DataExportController,
    HomeController,
    MatchController,
    StudentController,
    TutorController,
)
from .database import create_db_and_tables, make_engine
from .router import Controllers, build_router
from .services import AuthService
from .status_codes import STATUS_CODES

logger = logging.getLogger("tutormatch.api")

LOG_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str) -> None:
    """Timestamped console logging unless the host already configured handlers."""
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATEFMT)


def build_controllers(engine) -> Controllers:
    """Construct every controller the route table dispatches to."""
    return Controllers(
        home=HomeController(),
        authentication=AuthenticationController(engine),
        data_export=DataExportController(engine),
        tutor=TutorController(engine),
        student=StudentController(engine),
        match=MatchController(engine),
    )


def create_app(settings: Optional[Settings] = None, controllers: Optional[Controllers] = None) -> FastAPI:
    """Build the application.

    `controllers` replaces the database-backed controller set, which is
    useful for exercising the router on its own. Missing controller
    actions or status codes raise `ConstructionError` here, before any
    request is served.
    """
    settings = settings or Settings()
    configure_logging(settings.LOG_LEVEL)
    logger.info("Configuring application from %s", settings.describe_source())

    if controllers is None:
        engine = make_engine(settings.DATABASE_URL)
        create_db_and_tables(engine)
        with Session(engine) as db:
            AuthService(db).ensure_admin(settings.ADMIN_USERNAME, settings.ADMIN_PASSWORD)
        controllers = build_controllers(engine)

    gate = build_router(STATUS_CODES, controllers, settings.PROTECTED_DIR)

    # every path goes through the gate, including the ones FastAPI reserves for docs
    app = FastAPI(title="Tutor Match", docs_url=None, redoc_url=None, openapi_url=None)
    app.state.settings = settings
    app.state.gate = gate
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.SESSION_SECRET,
        max_age=settings.SESSION_MAX_AGE,
        same_site="lax",
        https_only=settings.ENV != "dev",
    )

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):
        req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
        request.state.request_id = req_id
        started = time.perf_counter()
        response: Response
        try:
            response = await call_next(request)
        except Exception:
            elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
            logger.exception(
                "request_failed %s",
                json.dumps(
                    {
                        "request_id": req_id,
                        "path": request.url.path,
                        "method": request.method,
                        "duration_ms": elapsed_ms,
                        "client": request.client.host if request.client else "unknown",
                    },
                    ensure_ascii=True,
                ),
            )
            raise
        response.headers["X-Request-ID"] = req_id
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.info(
            "request_done %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "status_code": response.status_code,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
        return response

    # an ASGI endpoint with no method list is routed for every verb
    app.add_route("/{path:path}", gate)
    return app


app = create_app()
