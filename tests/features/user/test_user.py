"""Tests for the user feature.
Covers: UserService registration, the register endpoint and GET /users/me.
"""

import pytest
from fastapi import status
from pydantic import ValidationError

from src.config.settings import settings
from src.features.user.exceptions import EmailAlreadyExists, UsernameAlreadyExists
from src.features.user.models import UserStatus
from src.features.user.schemas import UserRegisterRequest
from src.features.user.service import UserService

USERS = f"{settings.api_prefix}/users"


def _registration(**overrides) -> dict:
    payload = {
        "email": "newuser@example.com",
        "username": "newuser",
        "full_name": "New User",
        "password": "SecurePass123!",
        "confirm_password": "SecurePass123!",
    }
    payload.update(overrides)
    return payload


# UserService Unit Tests


class TestUserServiceRegistration:
    """Tests for UserService.register_user()"""

    async def test_register_user_success(self, session):
        user = await UserService.register_user(session, UserRegisterRequest(**_registration()))

        assert user.id is not None
        assert user.email == "newuser@example.com"
        assert user.username == "newuser"
        assert user.full_name == "New User"
        assert user.status == UserStatus.ACTIVE
        assert user.verify_password("SecurePass123!")

    async def test_email_is_stored_lowercase(self, session):
        user = await UserService.register_user(session, UserRegisterRequest(**_registration(email="New@Example.com")))
        assert user.email == "new@example.com"

    async def test_register_user_duplicate_username(self, session, make_user):
        await make_user(username="taken")

        with pytest.raises(UsernameAlreadyExists):
            await UserService.register_user(session, UserRegisterRequest(**_registration(username="TAKEN")))

    async def test_register_user_duplicate_email(self, session, make_user):
        await make_user(email="taken@example.com")

        with pytest.raises(EmailAlreadyExists):
            await UserService.register_user(session, UserRegisterRequest(**_registration(email="Taken@example.com")))


class TestUserRegisterRequest:
    def test_passwords_must_match(self):
        with pytest.raises(ValidationError, match="Passwords do not match"):
            UserRegisterRequest(**_registration(confirm_password="Different123!"))

    def test_password_minimum_length(self):
        with pytest.raises(ValidationError):
            UserRegisterRequest(**_registration(password="short", confirm_password="short"))

    def test_username_charset(self):
        with pytest.raises(ValidationError):
            UserRegisterRequest(**_registration(username="no spaces"))

    def test_blank_full_name(self):
        with pytest.raises(ValidationError, match="Full name must not be blank"):
            UserRegisterRequest(**_registration(full_name="   "))

    def test_full_name_is_stripped(self):
        assert UserRegisterRequest(**_registration(full_name="  Ada  ")).full_name == "Ada"


# HTTP endpoints


class TestRegisterEndpoint:
    async def test_register_returns_201(self, client):
        response = await client.post(f"{USERS}/register", json=_registration())

        assert response.status_code == status.HTTP_201_CREATED
        body = response.json()
        assert body["username"] == "newuser"
        assert body["email"] == "newuser@example.com"
        assert body["status"] == UserStatus.ACTIVE.value
        assert "password" not in body
        assert "hashed_password" not in body

    async def test_registered_user_can_log_in(self, client):
        await client.post(f"{USERS}/register", json=_registration())

        response = await client.post(
            f"{settings.api_prefix}/auth/login",
            json={"email": "newuser@example.com", "password": "SecurePass123!"},
        )

        assert response.status_code == status.HTTP_200_OK

    async def test_duplicate_username_returns_409(self, client, make_user):
        await make_user(username="newuser")

        response = await client.post(f"{USERS}/register", json=_registration())

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["detail"] == "Username already registered"

    async def test_duplicate_email_returns_409(self, client, make_user):
        await make_user(email="newuser@example.com")

        response = await client.post(f"{USERS}/register", json=_registration())

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["detail"] == "Email already registered"

    async def test_password_mismatch_returns_422(self, client):
        response = await client.post(f"{USERS}/register", json=_registration(confirm_password="Other123!!"))
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_CONTENT

    async def test_invalid_email_returns_422(self, client):
        response = await client.post(f"{USERS}/register", json=_registration(email="not-an-email"))
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_CONTENT

    async def test_register_is_public_but_rate_limited(self, client):
        for i in range(6):
            response = await client.post(f"{USERS}/register", json=_registration(email="x", username=f"user{i}"))
            assert response.status_code == status.HTTP_422_UNPROCESSABLE_CONTENT

        response = await client.post(f"{USERS}/register", json=_registration(email="x"))

        assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS


class TestUserEndpointGetMe:
    async def test_get_me_with_cookie(self, auth_client):
        client, user, _ = auth_client

        response = await client.get(f"{USERS}/me")

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["id"] == user.id
        assert body["username"] == user.username
        assert body["email"] == user.email

    async def test_get_me_with_bearer_header(self, auth_client):
        client, user, tokens = auth_client
        client.cookies.clear()

        response = await client.get(f"{USERS}/me", headers={"Authorization": f"Bearer {tokens['access_token']}"})

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["id"] == user.id

    async def test_get_me_without_auth(self, client):
        response = await client.get(f"{USERS}/me")
        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["detail"] == "Not authenticated"
