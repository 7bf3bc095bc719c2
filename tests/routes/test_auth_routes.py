from roster_app.models import db


def test_login_with_json_credentials(client, test_user):
    db.session.add(test_user)
    db.session.commit()

    response = client.post("/login", json={"username": "testuser", "password": "testpass123"})

    assert response.status_code == 200
    assert response.get_json()["user"]["username"] == "testuser"
    assert test_user.last_login is not None


def test_login_rejects_bad_password(client, test_user):
    db.session.add(test_user)
    db.session.commit()

    response = client.post("/login", json={"username": "testuser", "password": "wrong"})

    assert response.status_code == 401
    assert response.get_json()["error"] == "invalid_credentials"


def test_inactive_user_cannot_log_in(client, inactive_user):
    db.session.add(inactive_user)
    db.session.commit()

    response = client.post("/login", json={"username": "inactiveuser", "password": "userpass123"})

    assert response.status_code == 401


def test_login_requires_both_fields(client):
    response = client.post("/login", json={"username": "testuser"})

    assert response.status_code == 400
    assert response.get_json()["error"] == "validation_error"


def test_api_requires_authentication(client):
    for path in ("/api/me", "/api/donors", "/api/events", "/api/lists"):
        response = client.get(path)
        assert response.status_code == 401
        assert response.get_json()["error"] == "unauthorized"


def test_me_returns_logged_in_user(logged_in_user):
    client, user = logged_in_user

    response = client.get("/api/me")

    assert response.status_code == 200
    assert response.get_json()["user"] == {
        "id": user.id,
        "username": "testuser",
        "email": "testuser@example.com",
        "name": "Test User",
        "is_super_admin": False,
    }


def test_unknown_route_renders_json_error(client):
    response = client.get("/no/such/page")

    assert response.status_code == 404
    assert response.get_json()["error"] == "not_found"
