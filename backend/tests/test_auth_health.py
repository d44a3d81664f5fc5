from conftest import PASSWORD, auth_headers, make_user


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}


def test_health_db(client):
    res = client.get("/health/db")
    assert res.status_code == 200
    assert res.json()["db"] == "ok"


def test_health_worker_skipped_without_queue(client):
    res = client.get("/health/worker")
    assert res.json() == {"status": "skipped", "async_enabled": False}


def test_login_and_me(client, db_session):
    user = make_user(db_session, "teacher", email="kim@school.org")

    res = client.post("/api/v1/login/access-token", json={"email": "Kim@School.org", "password": PASSWORD})
    assert res.status_code == 200
    token = res.json()["access_token"]

    me = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"}).json()
    assert me["id"] == str(user.id)
    assert me["role"] == "teacher"
    assert me["permissions"] == ["manage_grades", "view_data"]


def test_wrong_password_is_unauthorized(client, db_session):
    make_user(db_session, "teacher", email="kim@school.org")
    res = client.post("/api/v1/login/access-token", json={"email": "kim@school.org", "password": "nope"})
    assert res.status_code == 401


def test_inactive_user_cannot_log_in(client, db_session):
    make_user(db_session, "teacher", email="gone@school.org", is_active=False)
    res = client.post("/api/v1/login/access-token", json={"email": "gone@school.org", "password": PASSWORD})
    assert res.status_code == 401


def test_permanent_admin_gets_every_permission(client, db_session):
    owner = make_user(db_session, "analyst", email="owner@school.org")
    me = client.get("/api/v1/auth/me", headers=auth_headers(owner)).json()
    assert me["role"] == "admin"
    assert len(me["permissions"]) == 6


def test_garbage_token_is_forbidden(client):
    res = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert res.status_code == 403
