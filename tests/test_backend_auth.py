import json
from types import SimpleNamespace

import pytest
from postgrest.exceptions import APIError

from core.settings import BackendSettings
from services.auth import AuthError, BackendAuth
from services.backend import Backend, BackendError


class FakeRequest:
    def __init__(self, data=None, exc=None):
        self.data = data
        self.exc = exc
        self.filters = []
        self.orders = []
        self.sent = None

    def eq(self, column, value):
        self.filters.append((column, value))
        return self

    def order(self, column, desc=False):
        self.orders.append((column, desc))
        return self

    def limit(self, n):
        return self

    def select(self, columns):
        return self

    def insert(self, row):
        self.sent = row
        return self

    def update(self, changes):
        self.sent = changes
        return self

    def delete(self):
        return self

    def execute(self):
        if self.exc is not None:
            raise self.exc
        return SimpleNamespace(data=self.data)


class FakeClient:
    def __init__(self, request, auth=None):
        self.request = request
        self.auth = auth

    def table(self, name):
        return self.request


class FakeGoTrue:
    def __init__(self):
        self.sessions = []
        self.signed_out = False

    def _response(self, email="ana@example.com"):
        return SimpleNamespace(
            user=SimpleNamespace(id="user-1", email=email),
            session=SimpleNamespace(access_token="acc", refresh_token="ref"),
        )

    def sign_in_with_password(self, credentials):
        if credentials["password"] != "secret":
            raise ValueError("Invalid login credentials")
        return self._response(credentials["email"])

    def set_session(self, access, refresh):
        self.sessions.append((access, refresh))
        return self._response()

    def sign_out(self):
        self.signed_out = True


def test_select_applies_filters_and_skips_none():
    request = FakeRequest(data=[{"id": "a"}])
    backend = Backend(client=FakeClient(request))

    rows = backend.select("trips", filters={"user_id": "u1", "status": None}, order=[("created_at", False)])

    assert rows == [{"id": "a"}]
    assert request.filters == [("user_id", "u1")]
    assert request.orders == [("created_at", True)]


def test_api_errors_become_backend_errors():
    exc = APIError({"message": "column trips.user_id does not exist", "code": "42703", "hint": None, "details": None})
    backend = Backend(client=FakeClient(FakeRequest(exc=exc)))

    with pytest.raises(BackendError) as info:
        backend.select("trips")

    assert info.value.code == "42703"
    assert info.value.missing_column


def test_insert_without_returned_row_is_an_error():
    backend = Backend(client=FakeClient(FakeRequest(data=[])))

    with pytest.raises(BackendError, match="returned no row"):
        backend.insert("trips", {"name": "x"})


def test_insert_returns_created_row():
    request = FakeRequest(data=[{"id": "srv-1", "name": "x"}])
    backend = Backend(client=FakeClient(request))

    assert backend.insert("trips", {"name": "x"}) == {"id": "srv-1", "name": "x"}
    assert request.sent == {"name": "x"}


def test_update_returns_first_row_or_none():
    request = FakeRequest(data=[{"id": "srv-1", "name": "y"}])
    backend = Backend(client=FakeClient(request))

    assert backend.update("trips", {"name": "y"}, filters={"id": "srv-1"}) == {"id": "srv-1", "name": "y"}
    assert request.filters == [("id", "srv-1")]
    assert request.sent == {"name": "y"}

    empty = Backend(client=FakeClient(FakeRequest(data=[])))
    assert empty.update("trips", {"name": "y"}, filters={"id": "gone"}) is None


def test_delete_counts_removed_rows():
    request = FakeRequest(data=[{"id": "a"}, {"id": "b"}])
    backend = Backend(client=FakeClient(request))

    assert backend.delete("stops", filters={"trip_id": "t1"}) == 2
    assert request.filters == [("trip_id", "t1")]


def test_unconfigured_backend_refuses_to_connect():
    backend = Backend(settings=BackendSettings())

    assert backend.configured is False
    with pytest.raises(BackendError, match="Serviço indisponível"):
        backend.connect()


def test_sign_in_normalizes_email_and_persists_tokens(tmp_path):
    gotrue = FakeGoTrue()
    backend = Backend(client=FakeClient(FakeRequest(), auth=gotrue))
    auth = BackendAuth(backend, token_path=tmp_path / "session.json")

    user_id = auth.sign_in("  Ana@Example.com ", "secret")

    assert user_id == "user-1"
    assert auth.email == "ana@example.com"
    saved = json.loads((tmp_path / "session.json").read_text(encoding="utf-8"))
    assert saved == {"access_token": "acc", "refresh_token": "ref"}


def test_wrong_password_raises_auth_error(tmp_path):
    backend = Backend(client=FakeClient(FakeRequest(), auth=FakeGoTrue()))
    auth = BackendAuth(backend, token_path=tmp_path / "session.json")

    with pytest.raises(AuthError):
        auth.sign_in("ana@example.com", "nope")
    assert auth.is_authenticated is False


def test_restore_and_sign_out(tmp_path):
    token_path = tmp_path / "session.json"
    token_path.write_text(json.dumps({"access_token": "a1", "refresh_token": "r1"}), encoding="utf-8")
    gotrue = FakeGoTrue()
    auth = BackendAuth(Backend(client=FakeClient(FakeRequest(), auth=gotrue)), token_path=token_path)

    assert auth.restore() is True
    assert gotrue.sessions == [("a1", "r1")]
    assert auth.user_id == "user-1"

    auth.sign_out()
    assert gotrue.signed_out is True
    assert auth.user_id is None
    assert not token_path.exists()


def test_corrupted_session_file_is_dropped(tmp_path):
    token_path = tmp_path / "session.json"
    token_path.write_text("garbage", encoding="utf-8")
    auth = BackendAuth(Backend(client=FakeClient(FakeRequest(), auth=FakeGoTrue())), token_path=token_path)

    assert auth.restore() is False
    assert not token_path.exists()
