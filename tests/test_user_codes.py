import re

from timetrack.models.models import UserCode

CODE_PATTERN = re.compile(r"^[a-z]+-[a-z]+-\d$")


def test_generate_user_code(client, db_session):
    response = client.post("/api/user-code")

    assert response.status_code == 200
    code = response.json()["code"]
    assert CODE_PATTERN.match(code)
    assert db_session.query(UserCode).filter(UserCode.code == code).count() == 1


def test_generated_codes_are_unique(client):
    codes = {client.post("/api/user-code").json()["code"] for _ in range(20)}

    assert len(codes) == 20


def test_collisions_are_retried(client, monkeypatch):
    taken = client.post("/api/user-code").json()["code"]
    candidates = iter([taken, taken, "fresh-code-1"])
    monkeypatch.setattr("timetrack.routers.user_codes.generate_passphrase", lambda: next(candidates))

    response = client.post("/api/user-code")

    assert response.json() == {"code": "fresh-code-1"}


def test_exhausted_code_space_returns_503(client, monkeypatch):
    taken = client.post("/api/user-code").json()["code"]
    monkeypatch.setattr("timetrack.routers.user_codes.generate_passphrase", lambda: taken)

    response = client.post("/api/user-code")

    assert response.status_code == 503
    assert response.json()["detail"] == "Unable to generate unique code"
