from __future__ import annotations

from datetime import timedelta

from database import utcnow


def _register(client, name="Grace", email="grace@example.com", password="secret123"):
    return client.post("/api/users", json={"name": name, "email": email, "password": password})


def test_register_creates_user_and_empty_profile(client, db):
    resp = _register(client)
    assert resp.status_code == 201
    assert "Verification code sent" in resp.json()["message"]

    user = db["user"].find_one({"email": "grace@example.com"})
    assert user is not None
    assert user["is_verified"] is False
    assert user["password"] != "secret123"
    assert len(user["verification_code"]) == 6
    assert db["profile"].find_one({"user_id": user["_id"]}) is not None


def test_register_duplicate_email_is_rejected(client, db):
    assert _register(client).status_code == 201
    resp = _register(client, name="Other")
    assert resp.status_code == 400
    assert resp.json()["message"] == "User already exists"
    assert db["user"].count_documents({"email": "grace@example.com"}) == 1


def test_register_validates_payload(client):
    resp = client.post("/api/users", json={"name": "G", "email": "not-an-email", "password": "secret123"})
    assert resp.status_code == 400
    assert resp.json()["code"] == "validation_error"


def test_login_requires_verified_email(client):
    _register(client)
    resp = client.post("/api/users/auth", json={"email": "grace@example.com", "password": "secret123"})
    assert resp.status_code == 401
    assert resp.json()["message"] == "Email not verified"


def test_login_with_wrong_password(client, make_user):
    make_user("Ada")
    resp = client.post("/api/users/auth", json={"email": "ada@example.com", "password": "wrong-pass"})
    assert resp.status_code == 400
    assert resp.json()["message"] == "Invalid email or password"


def test_verify_email_then_login(client, db):
    _register(client)
    code = db["user"].find_one({"email": "grace@example.com"})["verification_code"]

    resp = client.post("/api/users/verify-email", json={"email": "grace@example.com", "code": code})
    assert resp.status_code == 200
    body = resp.json()
    assert body["user"]["is_verified"] is True
    assert body["token"]
    assert "jwt" in resp.cookies

    stored = db["user"].find_one({"email": "grace@example.com"})
    assert "verification_code" not in stored

    login = client.post("/api/users/auth", json={"email": "grace@example.com", "password": "secret123"})
    assert login.status_code == 200
    assert login.json()["email"] == "grace@example.com"


def test_verify_email_rejects_wrong_or_expired_code(client, db):
    _register(client)
    resp = client.post("/api/users/verify-email", json={"email": "grace@example.com", "code": "000000"})
    assert resp.status_code == 400

    user = db["user"].find_one({"email": "grace@example.com"})
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"verification_code_expires": utcnow() - timedelta(minutes=1)}},
    )
    resp = client.post(
        "/api/users/verify-email",
        json={"email": "grace@example.com", "code": user["verification_code"]},
    )
    assert resp.status_code == 400
    assert resp.json()["message"] == "Invalid or expired verification code"


def test_resend_verification_issues_new_code(client, db):
    _register(client)
    before = db["user"].find_one({"email": "grace@example.com"})["verification_code_expires"]
    resp = client.post("/api/users/resend-verification", json={"email": "grace@example.com"})
    assert resp.status_code == 200
    after = db["user"].find_one({"email": "grace@example.com"})["verification_code_expires"]
    assert after >= before


def test_resend_verification_for_verified_user(client, make_user):
    make_user("Ada")
    resp = client.post("/api/users/resend-verification", json={"email": "ada@example.com"})
    assert resp.status_code == 400
    assert resp.json()["message"] == "User already verified"


def test_verification_endpoints_are_rate_limited(client):
    _register(client)
    statuses = [
        client.post("/api/users/verify-email", json={"email": "grace@example.com", "code": "111111"}).status_code
        for _ in range(6)
    ]
    assert statuses[:5] == [400] * 5
    assert statuses[5] == 429


def test_account_requires_authentication(client):
    resp = client.get("/api/users/profile")
    assert resp.status_code == 401
    assert resp.json()["message"] == "Not authorized, no token"

    resp = client.get("/api/users/profile", headers={"Authorization": "Bearer garbage"})
    assert resp.status_code == 401


def test_cookie_authentication(client, make_user):
    make_user("Ada")
    login = client.post("/api/users/auth", json={"email": "ada@example.com", "password": "secret123"})
    assert login.status_code == 200

    resp = client.get("/api/users/profile")
    assert resp.status_code == 200
    assert resp.json()["name"] == "Ada"

    client.post("/api/users/logout")
    client.cookies.clear()
    assert client.get("/api/users/profile").status_code == 401


def test_update_account(client, make_user):
    ada = make_user("Ada")
    make_user("Bob")

    resp = client.put("/api/users/profile", json={"email": "bob@example.com"}, headers=ada["headers"])
    assert resp.status_code == 400

    resp = client.put(
        "/api/users/profile",
        json={"name": "Ada L.", "password": "newsecret"},
        headers=ada["headers"],
    )
    assert resp.status_code == 200
    assert resp.json()["name"] == "Ada L."

    login = client.post("/api/users/auth", json={"email": "ada@example.com", "password": "newsecret"})
    assert login.status_code == 200


def test_profile_get_and_update(client, db, make_user):
    ada = make_user("Ada")
    assert client.get("/api/profile", headers=ada["headers"]).status_code == 404

    db["profile"].insert_one({"user_id": ada["doc"]["_id"], "company_name": "", "city": ""})
    resp = client.put(
        "/api/profile",
        data={"company_name": "Analytical Engines", "city": "London", "name": "Ada Lovelace"},
        headers=ada["headers"],
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["company_name"] == "Analytical Engines"
    assert body["user"]["name"] == "Ada Lovelace"

    resp = client.get("/api/profile", headers=ada["headers"])
    assert resp.json()["city"] == "London"


def test_profile_image_upload(client, db, make_user):
    ada = make_user("Ada")
    db["profile"].insert_one({"user_id": ada["doc"]["_id"], "profile_image": ""})

    resp = client.put(
        "/api/profile",
        files={"profile_image": ("me.png", b"\x89PNG fake", "image/png")},
        headers=ada["headers"],
    )
    assert resp.status_code == 200
    assert resp.json()["profile_image"].startswith("uploads/profiles/profileImage-")

    resp = client.put(
        "/api/profile",
        files={"profile_banner": ("notes.txt", b"hello", "text/plain")},
        headers=ada["headers"],
    )
    assert resp.status_code == 400
