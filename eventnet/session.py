"""Session context and local auth provider.

``SessionContext`` holds the signed-in user and their profile. It is
constructed explicitly with an auth provider and a data store and handed
to whatever needs the caller's identity; there is no ambient global
session.

``LocalAuthProvider`` is the in-process ``IAuthProvider`` used with the
local SQLite store (tests, operator CLI). Password hashes live in memory
only.
"""

import hashlib
import hmac
import secrets
from collections.abc import Callable
from typing import Any, Optional

from eventnet.config import Table
from eventnet.errors import CollaboratorFailure, EventNetError, NotAuthorized
from eventnet.interfaces import AuthEvent, AuthNotifier, IAuthProvider, IDataStore
from eventnet.logging import logger, user_id_var
from eventnet.models import AuthUser, Profile, parse_row
from eventnet.types import ProfileData
from eventnet.utils import new_id, utc_now_iso

PBKDF2_ITERATIONS = 120_000

EDITABLE_PROFILE_FIELDS = frozenset(
    {"full_name", "bio", "company", "position", "avatar_url", "linkedin_url"}
)


# =============================================================================
# Local Auth Provider
# =============================================================================


def hash_password(password: str, salt: bytes) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", password.encode(), salt, PBKDF2_ITERATIONS)


class LocalAuthProvider(AuthNotifier):
    """In-process auth provider backed by the local data store.

    Sign up inserts the user's profile row, mirroring what the hosted
    backend does with a database trigger.

    Args:
        store: Data store holding the profiles table

    Example:
        >>> auth = LocalAuthProvider(store)
        >>> user = await auth.sign_up("ada@example.com", "secret", "Ada Lovelace")
        >>> await auth.current_user()
        AuthUser(id='...', email='ada@example.com')
    """

    def __init__(self, store: IDataStore) -> None:
        super().__init__()
        self.store = store
        self._credentials: dict[str, tuple[str, bytes, bytes]] = {}
        self._current: Optional[AuthUser] = None

    async def current_user(self) -> Optional[AuthUser]:
        return self._current

    async def sign_up(self, email: str, password: str, full_name: str) -> AuthUser:
        """Create an account and its profile, then sign in."""
        email = email.strip().lower()
        if email in self._credentials:
            raise NotAuthorized(f"An account for {email} already exists")
        if not password:
            raise NotAuthorized("Password must not be empty")

        user_id = new_id()
        profile_row: ProfileData = {
            "id": user_id,
            "email": email,
            "full_name": full_name.strip() or None,
        }
        row = await self.store.insert(Table.PROFILES, dict(profile_row))
        salt = secrets.token_bytes(16)
        self._credentials[email] = (user_id, salt, hash_password(password, salt))
        logger.info(f"👤 Created account {user_id} for {email}")

        user = AuthUser(id=row["id"], email=email)
        await self._start(user, AuthEvent.SIGNED_IN)
        return user

    async def sign_in(self, email: str, password: str) -> AuthUser:
        """Verify credentials and sign in.

        Raises:
            NotAuthorized: If the email is unknown or the password is wrong
        """
        email = email.strip().lower()
        entry = self._credentials.get(email)
        if entry is None:
            raise NotAuthorized("Invalid email or password")
        user_id, salt, expected = entry
        if not hmac.compare_digest(hash_password(password, salt), expected):
            raise NotAuthorized("Invalid email or password")

        user = AuthUser(id=user_id, email=email)
        await self._start(user, AuthEvent.SIGNED_IN)
        return user

    async def impersonate(self, user_id: str) -> AuthUser:
        """Sign in as an existing profile without credentials.

        Used by operator tooling acting on behalf of a user.

        Raises:
            NotAuthorized: If no profile exists for ``user_id``
        """
        rows = await self.store.select(Table.PROFILES, {"id": user_id}, limit=1)
        if not rows:
            raise NotAuthorized(f"Unknown user {user_id}")
        profile = parse_row(Profile, rows[0])
        user = AuthUser(id=profile.id, email=profile.email)
        await self._start(user, AuthEvent.SIGNED_IN)
        return user

    async def sign_out(self) -> None:
        self._current = None
        await self._notify(AuthEvent.SIGNED_OUT, None)

    async def _start(self, user: AuthUser, event: AuthEvent) -> None:
        self._current = user
        await self._notify(event, user)


# =============================================================================
# Session Context
# =============================================================================


class SessionContext:
    """Signed-in user and profile, kept in sync with the auth provider.

    The context subscribes to the provider on construction: a sign-out
    clears it, a sign-in or token refresh reloads user and profile.

    Attributes:
        user: Signed-in user, None when signed out
        profile: The user's profile, None until loaded
        loading: True until the first ``initialize`` finishes

    Example:
        >>> session = SessionContext(auth, store)
        >>> await session.initialize()
        >>> await session.sign_in("ada@example.com", "secret")
        >>> session.require_user_id()
        '...'
    """

    def __init__(self, auth: IAuthProvider, store: IDataStore) -> None:
        self.auth = auth
        self.store = store
        self.user: Optional[AuthUser] = None
        self.profile: Optional[Profile] = None
        self.loading = True
        self._unsubscribe: Optional[Callable[[], None]] = auth.subscribe(self._on_auth_event)

    @property
    def user_id(self) -> Optional[str]:
        return self.user.id if self.user else None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    async def initialize(self) -> None:
        """Load the current user and profile.

        Failures are logged and leave the context signed out; ``loading``
        is cleared in every case.
        """
        try:
            user = await self.auth.current_user()
            if user is not None:
                rows = await self.store.select(Table.PROFILES, {"id": user.id}, limit=1)
                self.profile = parse_row(Profile, rows[0]) if rows else None
                self.user = user
                user_id_var.set(user.id)
                logger.debug(f"Session loaded for user {user.id}")
        except EventNetError as exc:
            logger.error(f"❌ Error initializing session: {exc.message}")
        finally:
            self.loading = False

    async def sign_in(self, email: str, password: str) -> AuthUser:
        """Sign in; the context reloads through the auth event."""
        return await self.auth.sign_in(email, password)

    async def sign_up(self, email: str, password: str, full_name: str) -> AuthUser:
        return await self.auth.sign_up(email, password, full_name)

    async def sign_out(self) -> None:
        await self.auth.sign_out()
        self.clear()

    def clear(self) -> None:
        """Forget the signed-in user and profile."""
        self.user = None
        self.profile = None
        user_id_var.set(None)

    def require_user_id(self) -> str:
        """Return the signed-in user's ID.

        Raises:
            NotAuthorized: If nobody is signed in
        """
        if self.user is None:
            raise NotAuthorized("No user logged in")
        return self.user.id

    async def update_profile(self, **updates: Any) -> Profile:
        """Update the signed-in user's own profile.

        Only ``full_name``, ``bio``, ``company``, ``position``,
        ``avatar_url`` and ``linkedin_url`` may be changed.

        Raises:
            NotAuthorized: If nobody is signed in
            ValueError: If a field is not editable
        """
        user_id = self.require_user_id()
        unknown = sorted(set(updates) - EDITABLE_PROFILE_FIELDS)
        if unknown:
            raise ValueError(f"Profile field(s) not editable: {', '.join(unknown)}")

        rows = await self.store.update(
            Table.PROFILES,
            {"id": user_id},
            {**updates, "updated_at": utc_now_iso()},
        )
        if not rows:
            raise CollaboratorFailure(f"Profile {user_id} not found")

        if self.profile is not None:
            self.profile = self.profile.model_copy(update=updates)
        else:
            self.profile = parse_row(Profile, rows[0])
        logger.info(f"✏️ Updated profile {user_id}: {', '.join(sorted(updates))}")
        return self.profile

    def close(self) -> None:
        """Stop following auth events."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def _on_auth_event(self, event: AuthEvent, user: Optional[AuthUser]) -> None:
        if event == AuthEvent.SIGNED_OUT or user is None:
            self.clear()
        elif event in (AuthEvent.SIGNED_IN, AuthEvent.TOKEN_REFRESHED):
            await self.initialize()


__all__ = ["SessionContext", "LocalAuthProvider", "hash_password", "EDITABLE_PROFILE_FIELDS"]
