"""
Verification of exchanged provider credentials.

``ProviderVerifier.verify`` is the only place that decides whether a remote
identity is acceptable and turns it into the principal stored in the
session. Deployments customize it by overriding ``resolve_principal``.

Observers registered on the verifier receive an ``auth.provider.verified``
event for every accepted login. Delivery is fire-and-forget: observer
failures are logged and never abort verification.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Iterable, List, Mapping, Optional, Set, Union

from pydantic import ValidationError as PydanticValidationError

from auth_gateway.exceptions import ValidationError, VerificationError
from auth_gateway.models import Principal, ProviderCredentials, VerificationEvent
from auth_gateway.users import (
    USER_FIELDS_ALL,
    USERNAME_MIN_LENGTH,
    CreateUser,
    UserService,
    make_email,
)

logger = logging.getLogger(__name__)


VERIFIED_EVENT = "auth.provider.verified"

Observer = Callable[[VerificationEvent], Any]


class ProviderVerifier:
    """
    Turns provider credentials into an application principal.

    Args:
        observers: Callables notified after each successful verification.
                   Coroutine functions are scheduled as background tasks.
    """

    def __init__(self, observers: Optional[Iterable[Observer]] = None):
        self._observers: List[Observer] = list(observers or [])
        self._pending: Set[asyncio.Future] = set()

    @property
    def observers(self) -> List[Observer]:
        return list(self._observers)

    def add_observer(self, observer: Observer) -> None:
        self._observers.append(observer)

    async def verify(self, credentials: Union[ProviderCredentials, Mapping[str, Any]]) -> Principal:
        """
        Validate credentials and return the principal to store in the session.

        Args:
            credentials: Credentials from the token exchange

        Returns:
            Principal for the session

        Raises:
            VerificationError: If credentials are incomplete or the profile
                               is rejected
        """
        credentials = self._coerce(credentials)

        if not credentials.profile.id:
            raise VerificationError("Profile is missing an id")

        principal = await self.resolve_principal(credentials)
        if principal is None or not principal.id:
            raise VerificationError("Profile was rejected")

        self._notify(VerificationEvent(event=VERIFIED_EVENT, credentials=credentials))

        logger.info(
            "Provider credentials verified",
            extra={"provider": principal.provider, "provider_user_id": principal.id}
        )

        return principal

    async def resolve_principal(self, credentials: ProviderCredentials) -> Principal:
        """Map credentials to a principal. The profile is the principal by default."""
        return credentials.profile

    async def drain(self) -> None:
        """Wait for observer tasks that are still running."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    @staticmethod
    def _coerce(credentials) -> ProviderCredentials:
        if isinstance(credentials, ProviderCredentials):
            return credentials

        if not isinstance(credentials, Mapping):
            raise VerificationError("Credentials must be a mapping or ProviderCredentials")

        try:
            return ProviderCredentials.model_validate(credentials)
        except PydanticValidationError as e:
            missing = sorted({
                str(error["loc"][0]) for error in e.errors() if error.get("loc")
            })
            raise VerificationError(f"Incomplete credentials: {', '.join(missing)}") from e

    def _notify(self, event: VerificationEvent) -> None:
        for observer in self._observers:
            try:
                result = observer(event)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._pending.add(task)
                    task.add_done_callback(self._on_observer_done)
            except Exception as e:
                logger.error(
                    f"Verification observer failed: {e}",
                    exc_info=True,
                    extra={"event": event.event, "observer": _observer_name(observer)}
                )

    def _on_observer_done(self, task: asyncio.Future) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return

        exc = task.exception()
        if exc is not None:
            logger.error(
                f"Verification observer failed: {exc}",
                exc_info=exc,
                extra={"event": VERIFIED_EVENT}
            )


class UserLinkingVerifier(ProviderVerifier):
    """
    Verifier that links the provider profile to a persisted ``User``.

    The profile email is looked up with ``UserService.find_by_email``; a user
    is created when none exists. The returned principal is the profile with
    ``user_id`` set.
    """

    def __init__(self, user_service: UserService, observers: Optional[Iterable[Observer]] = None):
        super().__init__(observers)
        self.user_service = user_service

    async def resolve_principal(self, credentials: ProviderCredentials) -> Principal:
        profile = credentials.profile

        if not profile.email:
            raise VerificationError("Profile has no email address to link a user")

        try:
            email = make_email(profile.email)
        except ValidationError as e:
            raise VerificationError(f"Profile email is invalid: {e}") from e

        user = await self.user_service.find_by_email(email, USER_FIELDS_ALL)
        if user is None:
            username = profile.username
            if username is not None and len(username) < USERNAME_MIN_LENGTH:
                username = None

            user = await self.user_service.create_user(CreateUser(email=email, username=username))
            logger.info("Created user for provider profile", extra={"user_id": user.id})

        return profile.model_copy(update={"user_id": str(user.id)})


def _observer_name(observer: Observer) -> str:
    return getattr(observer, "__qualname__", None) or type(observer).__name__


__all__ = [
    "VERIFIED_EVENT",
    "Observer",
    "ProviderVerifier",
    "UserLinkingVerifier",
]
