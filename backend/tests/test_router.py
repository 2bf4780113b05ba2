import pytest
from fastapi.testclient import TestClient
from starlette.responses import JSONResponse

from tutormatch.errors import ConstructionError
from tutormatch.main import create_app
from tutormatch.router import (
    METHOD_NOT_ALLOWED_MESSAGE,
    Controllers,
    RouteTable,
    build_router,
    check_disjoint,
    compile_pattern,
    pattern_shapes,
)
from tutormatch.status_codes import STATUS_CODES

ACTIONS = {
    "home": ["login", "dashboard", "account", "admin", "student_form", "tutor_form",
             "students", "tutors", "matching", "export"],
    "authentication": ["login", "logout", "update_password", "list_users", "update_role",
                       "update_branch", "create_account", "delete_account"],
    "data_export": ["export_students", "export_tutors", "export_matches"],
    "tutor": ["get_tutor", "exit_tutor", "autocomplete", "create_tutor"],
    "student": ["get_student", "autocomplete", "create_student"],
    "match": ["get_matches", "add_or_update", "dissolve_match"],
}


class StubController:
    """Answers every action with its own name and the path parameters it saw."""

    def __init__(self, label, names):
        for name in names:
            setattr(self, name, self._action(f"{label}.{name}"))

    @staticmethod
    def _action(action):
        async def handler(request):
            return JSONResponse({"action": action, "params": dict(request.path_params)})
        return handler


async def _stub_login(request):
    request.session["user"] = (await request.json())["user"]
    return JSONResponse({"action": "authentication.login"})


def make_controllers(skip=()):
    controllers = {}
    for label, names in ACTIONS.items():
        controllers[label] = StubController(label, [n for n in names if (label, n) not in skip])
    if ("authentication", "login") not in skip:
        controllers["authentication"].login = _stub_login
    return Controllers(**controllers)


@pytest.fixture
def stub_client(settings):
    return TestClient(create_app(settings, controllers=make_controllers()), follow_redirects=False)


def sign_in(client, user=None):
    user = user if user is not None else {"username": "ada", "role": "admin"}
    r = client.post('/account/login', json={'user': user})
    assert r.status_code == 200
    return client


PROTECTED_ROUTES = [
    ("GET", "/logout", "authentication.logout", {}),
    ("POST", "/api/account/password", "authentication.update_password", {}),
    ("GET", "/api/accounts", "authentication.list_users", {}),
    ("POST", "/api/account/role", "authentication.update_role", {}),
    ("POST", "/api/account/branch", "authentication.update_branch", {}),
    ("POST", "/api/account", "authentication.create_account", {}),
    ("POST", "/api/account/jane", "authentication.create_account", {"username": "jane"}),
    ("DELETE", "/api/account/jane", "authentication.delete_account", {"username": "jane"}),
    ("GET", "/api/tutor", "tutor.get_tutor", {}),
    ("GET", "/api/tutor/3", "tutor.get_tutor", {"id": "3"}),
    ("DELETE", "/api/tutor/3", "tutor.exit_tutor", {"id": "3"}),
    ("GET", "/api/student", "student.get_student", {}),
    ("GET", "/api/student/4", "student.get_student", {"id": "4"}),
    ("GET", "/api/autocomplete/tutor/ann", "tutor.autocomplete", {"name": "ann"}),
    ("GET", "/api/autocomplete/student/bo", "student.autocomplete", {"name": "bo"}),
    ("POST", "/api/createstudent", "student.create_student", {}),
    ("POST", "/api/createtutor", "tutor.create_tutor", {}),
    ("GET", "/api/matches", "match.get_matches", {}),
    ("GET", "/api/matches/2", "match.get_matches", {"id": "2"}),
    ("POST", "/api/matches", "match.add_or_update", {}),
    ("POST", "/api/matches/2", "match.add_or_update", {"id": "2"}),
    ("DELETE", "/api/matches/2", "match.dissolve_match", {"id": "2"}),
    ("GET", "/export/students", "data_export.export_students", {}),
    ("GET", "/export/tutors", "data_export.export_tutors", {}),
    ("GET", "/export/matches", "data_export.export_matches", {}),
    ("GET", "/dashboard", "home.dashboard", {}),
    ("GET", "/account", "home.account", {}),
    ("GET", "/administration", "home.admin", {}),
    ("GET", "/student-form", "home.student_form", {}),
    ("GET", "/tutor-form", "home.tutor_form", {}),
    ("GET", "/students", "home.students", {}),
    ("GET", "/students/5", "home.students", {"id": "5"}),
    ("GET", "/tutors", "home.tutors", {}),
    ("GET", "/tutors/5", "home.tutors", {"id": "5"}),
    ("GET", "/matching", "home.matching", {}),
    ("GET", "/export", "home.export", {}),
]

WRONG_METHODS = [
    ("PUT", "/logout"),
    ("POST", "/user"),
    ("GET", "/api/account/password"),
    ("POST", "/api/accounts"),
    ("GET", "/api/account/role"),
    ("DELETE", "/api/account/branch"),
    ("GET", "/api/account/jane"),
    ("PUT", "/api/account"),
    ("POST", "/api/tutor/1"),
    ("DELETE", "/api/student/1"),
    ("POST", "/api/autocomplete/tutor/x"),
    ("DELETE", "/api/autocomplete/student/x"),
    ("GET", "/api/createstudent"),
    ("GET", "/api/createtutor"),
    ("PUT", "/api/matches/1"),
    ("PATCH", "/api/matches"),
    ("POST", "/export/students"),
    ("DELETE", "/export/tutors"),
    ("PUT", "/export/matches"),
    ("DELETE", "/dashboard"),
    ("POST", "/account"),
    ("POST", "/students/4"),
    ("PUT", "/export"),
]


@pytest.mark.parametrize("method,path,action,params", PROTECTED_ROUTES)
def test_declared_routes_reach_their_action(stub_client, method, path, action, params):
    sign_in(stub_client)
    r = stub_client.request(method, path)
    assert r.status_code == 200
    assert r.json() == {"action": action, "params": params}


@pytest.mark.parametrize("method,path", WRONG_METHODS)
def test_undeclared_method_is_405(stub_client, method, path):
    sign_in(stub_client)
    r = stub_client.request(method, path)
    assert r.status_code == 405
    assert r.text == METHOD_NOT_ALLOWED_MESSAGE


@pytest.mark.parametrize("method,path", [("GET", "/account/login"), ("PUT", "/account/login"), ("POST", "/login"), ("DELETE", "/login")])
def test_unprotected_wrong_method_is_405_without_session(stub_client, method, path):
    r = stub_client.request(method, path)
    assert r.status_code == 405
    assert r.text == METHOD_NOT_ALLOWED_MESSAGE


@pytest.mark.parametrize("method,path,_action,_params", PROTECTED_ROUTES + [("GET", "/user", None, None)])
def test_protected_routes_redirect_without_session(stub_client, method, path, _action, _params):
    r = stub_client.request(method, path)
    assert r.status_code == 302
    assert r.headers["location"] == "/login"


@pytest.mark.parametrize("method,path", WRONG_METHODS)
def test_gate_runs_before_method_check(stub_client, method, path):
    r = stub_client.request(method, path)
    assert r.status_code == 302
    assert r.headers["location"] == "/login"


def test_login_page_without_session(stub_client):
    r = stub_client.get('/login')
    assert r.status_code == 200
    assert r.json()["action"] == "home.login"


def test_login_page_redirects_signed_in_user(stub_client):
    sign_in(stub_client)
    r = stub_client.get('/login')
    assert r.status_code == 302
    assert r.headers["location"] == "/dashboard"


@pytest.mark.parametrize("method", ["GET", "POST", "PUT", "DELETE"])
def test_root_redirects_to_login(stub_client, method):
    r = stub_client.request(method, '/')
    assert r.status_code == 302
    assert r.headers["location"] == "/login"
    sign_in(stub_client)
    r = stub_client.request(method, '/')
    assert r.status_code == 302
    assert r.headers["location"] == "/login"


@pytest.mark.parametrize("user", [
    {"username": "ada", "role": "admin"},
    {"username": "bob", "roles": ["staff", "reports"], "prefs": {"page_size": 25, "dark": True}},
    ["a", 1, None],
    "just-a-name",
])
def test_user_endpoint_echoes_session_user(stub_client, user):
    sign_in(stub_client, user)
    r = stub_client.get('/user')
    assert r.status_code == 200
    assert r.json() == {"user": user}


def test_user_endpoint_with_empty_user_redirects(stub_client):
    # an empty user is treated as no user by the gate
    sign_in(stub_client, {})
    r = stub_client.get('/user')
    assert r.status_code == 302


def test_unknown_path_serves_static_file(stub_client):
    sign_in(stub_client)
    r = stub_client.get('/notes.txt')
    assert r.status_code == 200
    assert r.text == "protected notes"
    r = stub_client.get('/css/site.css')
    assert r.status_code == 200


def test_unknown_path_is_not_405(stub_client):
    sign_in(stub_client)
    assert stub_client.get('/nowhere.html').status_code == 404
    assert stub_client.post('/notes.txt').status_code == 404
    # a required parameter that is missing falls through to static files too
    assert stub_client.get('/api/autocomplete/tutor').status_code == 404


def test_static_files_need_a_session(stub_client):
    r = stub_client.get('/notes.txt')
    assert r.status_code == 302
    assert r.headers["location"] == "/login"


def test_matching_ignores_case_and_trailing_slash(stub_client):
    sign_in(stub_client)
    assert stub_client.get('/Dashboard/').json()["action"] == "home.dashboard"
    assert stub_client.get('/api/tutor/9/').json()["params"] == {"id": "9"}


def test_head_uses_get_handler(stub_client):
    sign_in(stub_client)
    assert stub_client.head('/dashboard').status_code == 200
    assert stub_client.head('/api/createtutor').status_code == 405


@pytest.mark.parametrize("method,path", [
    ("TRACE", "/"),
    ("TRACE", "/dashboard"),
    ("PURGE", "/"),
    ("LINK", "/api/tutor/1"),
])
def test_uncommon_verbs_reach_the_gate(stub_client, method, path):
    r = stub_client.request(method, path)
    assert r.status_code == 302
    assert r.headers["location"] == "/login"


def test_uncommon_verb_on_declared_route_is_405(stub_client):
    sign_in(stub_client)
    r = stub_client.request("TRACE", '/dashboard')
    assert r.status_code == 405
    assert r.text == METHOD_NOT_ALLOWED_MESSAGE


def test_plain_function_actions_are_dispatched(settings):
    controllers = make_controllers()

    def dashboard(request):
        return JSONResponse({"action": "sync.dashboard"})
    controllers.home.dashboard = dashboard
    client = TestClient(create_app(settings, controllers=controllers), follow_redirects=False)
    sign_in(client)
    assert client.get('/dashboard').json() == {"action": "sync.dashboard"}


def test_missing_action_fails_construction(settings):
    controllers = make_controllers(skip={("tutor", "exit_tutor")})
    with pytest.raises(ConstructionError, match="exit_tutor"):
        create_app(settings, controllers=controllers)


def test_missing_status_code_fails_construction(protected_dir):
    codes = {k: v for k, v in STATUS_CODES.items() if k != "METHOD_NOT_ALLOWED"}
    with pytest.raises(ConstructionError, match="METHOD_NOT_ALLOWED"):
        build_router(codes, make_controllers(), protected_dir)


def test_route_list_is_fixed(protected_dir):
    gate = build_router(STATUS_CODES, make_controllers(), protected_dir)
    assert [r.pattern for r in gate.unprotected] == ["/account/login", "/login", "/"]
    protected = {r.pattern: tuple(r.methods) for r in gate.protected}
    assert len(protected) == 26
    assert protected["/user"] == ("GET",)
    assert protected["/api/matches/:id?"] == ("GET", "POST", "DELETE")


def test_overlapping_patterns_rejected():
    async def noop(request):
        return None
    table = RouteTable("protected", noop)
    table.route("/students/:id?", get=noop)
    with pytest.raises(ConstructionError):
        table.route("/students", get=noop)
    with pytest.raises(ConstructionError):
        table.route("/Students/:name", get=noop)


def test_route_in_both_tables_rejected():
    async def noop(request):
        return None
    public = RouteTable("unprotected", noop)
    public.route("/students/:id?", get=noop)
    protected = RouteTable("protected", noop)
    protected.route("/students", get=noop)
    with pytest.raises(ConstructionError, match="/students"):
        check_disjoint(public, protected)
    other = RouteTable("protected", noop)
    other.route("/tutors", get=noop)
    check_disjoint(public, other)


def test_pattern_compilation():
    rx = compile_pattern("/api/tutor/:id?")
    assert rx.match("/api/tutor")
    assert rx.match("/api/tutor/12").group("id") == "12"
    assert not rx.match("/api/tutor/12/extra")
    assert not rx.match("/api/tutors")
    assert compile_pattern("/").match("/")
    with pytest.raises(ConstructionError):
        compile_pattern("/api/:id?/more")
    assert pattern_shapes("/api/tutor/:id?") == frozenset({"/api/tutor", "/api/tutor/:"})
