"""Test bearer token handling."""

from datetime import timedelta

import pytest
from app.auth import create_access_token, decode_token
from app.config import get_settings
from fastapi import HTTPException
from jose import jwt

from actors import CLIENT_ID


class TestTokens:
    def test_roundtrip(self):
        settings = get_settings()
        payload = decode_token(create_access_token(CLIENT_ID, settings), settings)
        assert payload["sub"] == CLIENT_ID
        assert payload["aud"] == "authenticated"
        assert payload["role"] == "authenticated"

    def test_expired_token(self):
        settings = get_settings()
        token = create_access_token(CLIENT_ID, settings, expires_delta=timedelta(seconds=-5))
        with pytest.raises(HTTPException) as exc_info:
            decode_token(token, settings)
        assert exc_info.value.status_code == 401

    def test_wrong_secret(self):
        settings = get_settings()
        token = jwt.encode(
            {"sub": CLIENT_ID, "aud": "authenticated"}, "some-other-secret", algorithm="HS256"
        )
        with pytest.raises(HTTPException):
            decode_token(token, settings)

    def test_wrong_audience(self):
        settings = get_settings()
        token = jwt.encode(
            {"sub": CLIENT_ID, "aud": "anon"}, settings.jwt_secret_key, algorithm="HS256"
        )
        with pytest.raises(HTTPException):
            decode_token(token, settings)


class TestCurrentActor:
    def test_missing_header(self, client):
        response = client.get("/api/v1/jobs")
        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"

    def test_token_without_subject(self, client):
        settings = get_settings()
        token = jwt.encode(
            {"aud": "authenticated"}, settings.jwt_secret_key, algorithm=settings.jwt_algorithm
        )
        response = client.get("/api/v1/jobs", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid token payload"

    def test_valid_token(self, client, client_headers):
        assert client.get("/api/v1/jobs", headers=client_headers).status_code == 200
