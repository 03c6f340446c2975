import pytest
from fastapi import HTTPException

import main

USER = {"name": "Asha", "email": "asha@shop.io", "password": "s3cret!"}


def test_register_returns_token_and_public_user(client, db):
    res = client.post("/api/auth/register", json=USER)
    assert res.status_code == 200
    body = res.json()
    assert body["user"] == {"id": body["user"]["id"], "name": "Asha", "email": "asha@shop.io", "role": "user"}
    claims = main.decode_token(body["token"])
    assert claims == {"id": body["user"]["id"], "email": "asha@shop.io", "role": "user"}

    stored = db["users"].find_one({"email": "asha@shop.io"})
    assert stored["password"] != "s3cret!"
    assert stored["password"].startswith("$2")


def test_register_duplicate_email(client):
    client.post("/api/auth/register", json=USER)
    res = client.post("/api/auth/register", json={**USER, "name": "Other"})
    assert res.status_code == 400
    assert res.json() == {"error": "User exists"}


def test_register_invalid_email(client):
    res = client.post("/api/auth/register", json={**USER, "email": "nope"})
    assert res.status_code == 400
    assert "email" in res.json()["error"]


def test_login_success(client):
    registered = client.post("/api/auth/register", json=USER).json()
    res = client.post("/api/auth/login", json={"email": USER["email"], "password": USER["password"]})
    assert res.status_code == 200
    body = res.json()
    assert body["user"] == registered["user"]
    assert main.decode_token(body["token"])["id"] == registered["user"]["id"]


def test_login_wrong_password_and_unknown_email_look_the_same(client):
    client.post("/api/auth/register", json=USER)
    wrong = client.post("/api/auth/login", json={"email": USER["email"], "password": "nope"})
    unknown = client.post("/api/auth/login", json={"email": "ghost@shop.io", "password": "nope"})
    assert wrong.status_code == unknown.status_code == 400
    assert wrong.json() == unknown.json() == {"error": "Invalid credentials"}


def test_password_hash_is_salted():
    assert main.hash_password("same") != main.hash_password("same")
    assert main.verify_password("same", main.hash_password("same"))


def test_decode_rejects_tampered_token():
    token = main.create_token({"id": 1, "email": "a@b.co", "role": "user"})
    with pytest.raises(HTTPException) as exc:
        main.decode_token(token[:-2] + "xx")
    assert exc.value.status_code == 401


def test_token_expiry_is_opt_in(monkeypatch):
    assert "exp" not in main.decode_token(main.create_token({"id": 1}))
    monkeypatch.setattr(main, "JWT_EXPIRES_MINUTES", "5")
    assert "exp" in main.decode_token(main.create_token({"id": 1}))


def test_login_with_mixed_case_domain_as_registered(client):
    registered = client.post("/api/auth/register", json={**USER, "email": "asha@Shop.IO"})
    assert registered.status_code == 200
    res = client.post("/api/auth/login", json={"email": "asha@Shop.IO", "password": USER["password"]})
    assert res.status_code == 200
    assert res.json()["user"]["id"] == registered.json()["user"]["id"]


def test_mixed_case_domain_counts_as_duplicate(client):
    client.post("/api/auth/register", json=USER)
    res = client.post("/api/auth/register", json={**USER, "email": "asha@SHOP.io"})
    assert res.status_code == 400
    assert res.json() == {"error": "User exists"}
