"""
Verification Tests

Tests the verification step, observer notification and user linking.
"""

import logging
from typing import Dict, Optional

import pytest

from auth_gateway.auth.verify import VERIFIED_EVENT, ProviderVerifier, UserLinkingVerifier
from auth_gateway.exceptions import VerificationError
from auth_gateway.models import ProviderCredentials
from auth_gateway.users import CreateUser, User, make_email, make_user_id, make_username, new_user_id

from conftest import make_credentials


class InMemoryUserService:
    """UserService test double"""

    def __init__(self):
        self.users: Dict[str, User] = {}
        self.created = []

    async def find_by_email(self, email, fields=None) -> Optional[User]:
        return next((user for user in self.users.values() if user.email == email), None)

    async def find_by_id(self, id) -> Optional[User]:
        return self.users.get(id)

    async def create_user(self, data: CreateUser) -> User:
        user = User(
            id=new_user_id(),
            email=make_email(data.email),
            username=make_username(data.username) if data.username else None,
        )
        self.users[user.id] = user
        self.created.append(data)
        return user


def credentials_dict(**overrides):
    data = make_credentials().model_dump()
    data.update(overrides)
    return data


class TestProviderVerifier:
    """Test suite for ProviderVerifier.verify"""

    @pytest.mark.asyncio
    async def test_profile_is_passed_through(self, credentials):
        principal = await ProviderVerifier().verify(credentials)

        assert principal == credentials.profile
        assert principal.id == "p1"
        assert principal.display_name == "Ana"

    @pytest.mark.asyncio
    async def test_accepts_complete_mapping(self):
        principal = await ProviderVerifier().verify(credentials_dict())

        assert principal.id == "p1"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("missing_field", ["access_token", "refresh_token", "expires_in_seconds", "profile"])
    async def test_incomplete_credentials_rejected(self, missing_field):
        data = credentials_dict()
        del data[missing_field]

        with pytest.raises(VerificationError) as exc_info:
            await ProviderVerifier().verify(data)

        assert missing_field in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_empty_profile_id_rejected(self):
        credentials = make_credentials(user_id="")

        with pytest.raises(VerificationError):
            await ProviderVerifier().verify(credentials)

    @pytest.mark.asyncio
    async def test_non_mapping_rejected(self):
        with pytest.raises(VerificationError):
            await ProviderVerifier().verify("not-credentials")

    @pytest.mark.asyncio
    async def test_resolve_principal_can_be_overridden(self, credentials):
        class RejectingVerifier(ProviderVerifier):
            async def resolve_principal(self, credentials: ProviderCredentials):
                raise VerificationError("Account not allowed")

        with pytest.raises(VerificationError):
            await RejectingVerifier().verify(credentials)


class TestObservers:
    """Test suite for verification observers"""

    @pytest.mark.asyncio
    async def test_sync_observer_receives_event(self, credentials):
        events = []
        verifier = ProviderVerifier(observers=[events.append])

        await verifier.verify(credentials)

        assert len(events) == 1
        assert events[0].event == VERIFIED_EVENT
        assert events[0].credentials == credentials

    @pytest.mark.asyncio
    async def test_async_observer_receives_event(self, credentials):
        events = []

        async def observer(event):
            events.append(event)

        verifier = ProviderVerifier()
        verifier.add_observer(observer)

        await verifier.verify(credentials)
        await verifier.drain()

        assert [event.credentials.profile.id for event in events] == ["p1"]

    @pytest.mark.asyncio
    async def test_failing_observers_do_not_abort_verification(self, credentials, caplog):
        events = []

        def broken(event):
            raise RuntimeError("sync observer down")

        async def broken_async(event):
            raise RuntimeError("async observer down")

        verifier = ProviderVerifier(observers=[broken, broken_async, events.append])

        with caplog.at_level(logging.ERROR, logger="auth_gateway.auth.verify"):
            principal = await verifier.verify(credentials)
            await verifier.drain()

        assert principal.id == "p1"
        assert len(events) == 1
        assert "sync observer down" in caplog.text
        assert "async observer down" in caplog.text

    @pytest.mark.asyncio
    async def test_no_event_when_verification_fails(self):
        events = []
        verifier = ProviderVerifier(observers=[events.append])

        with pytest.raises(VerificationError):
            await verifier.verify(make_credentials(user_id=""))

        assert events == []


class TestUserLinkingVerifier:
    """Test suite for linking provider profiles to users"""

    @pytest.mark.asyncio
    async def test_creates_user_when_absent(self, credentials):
        users = InMemoryUserService()

        principal = await UserLinkingVerifier(users).verify(credentials)

        assert len(users.created) == 1
        assert users.created[0].email == "p1@example.com"
        assert users.created[0].username is None  # "p1" is too short
        assert make_user_id(principal.user_id) == principal.user_id
        assert principal.id == "p1"

    @pytest.mark.asyncio
    async def test_reuses_existing_user(self):
        users = InMemoryUserService()
        existing = await users.create_user(CreateUser(email="anna@example.com", username="anna"))
        users.created.clear()

        principal = await UserLinkingVerifier(users).verify(make_credentials(user_id="anna", display_name="Anna"))

        assert principal.user_id == existing.id
        assert users.created == []

    @pytest.mark.asyncio
    async def test_profile_without_email_rejected(self):
        credentials = make_credentials(email=None)

        with pytest.raises(VerificationError):
            await UserLinkingVerifier(InMemoryUserService()).verify(credentials)

    @pytest.mark.asyncio
    async def test_profile_with_invalid_email_rejected(self):
        credentials = make_credentials(email="not-an-email")

        with pytest.raises(VerificationError):
            await UserLinkingVerifier(InMemoryUserService()).verify(credentials)
