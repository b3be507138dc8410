"""
Session Store - owns the authenticated identity and its resolved role.

One store per browser session. It holds exactly one subscription to the
identity backend, resolves the role of every identity it sees from the
users collection, and fans the result out to local listeners and to
``observe()`` streams.

The store is an explicitly owned object: the Streamlit entry point keeps
it in ``st.session_state`` and tears it down with the session.
"""

import asyncio
import logging
from typing import AsyncIterator, Callable, Optional

from cropview.models import DEFAULT_ROLE, AuthState, Identity, IdentityChanged
from cropview.services.access_policy import Area, verify_login_role
from cropview.services.backends.base import BaseIdentityBackend, Unsubscribe
from cropview.services.errors import (
    AccessDenied,
    AuthError,
    DataAccessError,
    NotFoundError,
)
from cropview.services.repository import RecordRepository

logger = logging.getLogger(__name__)

ROLE_LOOKUP_WARNING = "Failed to fetch user role."

SessionListener = Callable[[IdentityChanged], None]

_CLOSED = object()


class SessionStore:
    """
    Current identity and role of one UI session.

    Lifecycle:
        store = SessionStore(backend, repository)
        await store.start()        # subscribes once, resolves current identity
        ...
        store.teardown()           # unsubscribes once, ends observe() streams
    """

    def __init__(self, identity_backend: BaseIdentityBackend, repository: RecordRepository):
        self._backend = identity_backend
        self._repository = repository

        self._identity: Optional[Identity] = None
        self._role: Optional[str] = None
        self._resolved = False
        self._resolving = False
        self._authenticating = False
        self._generation = 0

        self._unsubscribe: Optional[Unsubscribe] = None
        self._torn_down = False
        self._listeners: list[SessionListener] = []
        self._queues: list[asyncio.Queue] = []
        self._warnings: list[str] = []

    # ============ State ============

    @property
    def identity(self) -> Optional[Identity]:
        return self._identity

    @property
    def role(self) -> Optional[str]:
        return self._role

    @property
    def is_loading(self) -> bool:
        """True until the first identity event is resolved, and while a role lookup runs."""
        return not self._resolved or self._resolving

    @property
    def auth_state(self) -> AuthState:
        if self._authenticating:
            return AuthState.AUTHENTICATING
        if self._identity is not None:
            return AuthState.AUTHENTICATED
        return AuthState.ANONYMOUS

    @property
    def is_started(self) -> bool:
        return self._unsubscribe is not None

    @property
    def is_torn_down(self) -> bool:
        return self._torn_down

    def pop_warnings(self) -> list[str]:
        """Returns and clears the queued non-fatal warnings."""
        warnings, self._warnings = self._warnings, []
        return warnings

    # ============ Lifecycle ============

    async def start(self) -> None:
        """
        Subscribes to the identity backend and resolves the current identity.

        Idempotent: a second call is a no-op.

        Raises:
            RuntimeError: If the store was already torn down
        """
        if self._torn_down:
            raise RuntimeError("SessionStore has been torn down")
        if self._unsubscribe is not None:
            return

        self._unsubscribe = self._backend.on_identity_change(self._handle_identity_change)
        logger.info(f"Session store subscribed to {self._backend.provider_name} identity backend")
        await self._handle_identity_change(self._backend.current_identity())

    def teardown(self) -> None:
        """Releases the backend subscription and ends all streams. Runs once."""
        if self._torn_down:
            return
        self._torn_down = True

        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        self._listeners.clear()
        for queue in self._queues:
            queue.put_nowait(_CLOSED)
        logger.info("Session store torn down")

    async def refresh(self) -> None:
        """Lets the backend drop an expired session (listeners are notified)."""
        await self._backend.check_expiry()

    # ============ Fan-out ============

    def subscribe(self, listener: SessionListener) -> Unsubscribe:
        """
        Registers a local listener for IdentityChanged events.

        Returns:
            Unsubscribe handle (safe to call more than once)
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def observe(self) -> AsyncIterator[IdentityChanged]:
        """Yields IdentityChanged events until teardown."""
        if self._torn_down:
            return

        queue: asyncio.Queue = asyncio.Queue()
        self._queues.append(queue)
        try:
            while True:
                event = await queue.get()
                if event is _CLOSED:
                    return
                yield event
        finally:
            if queue in self._queues:
                self._queues.remove(queue)

    def _publish(self) -> None:
        event = IdentityChanged(identity=self._identity, role=self._role)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Session listener failed")
        for queue in self._queues:
            queue.put_nowait(event)

    # ============ Identity resolution ============

    async def _handle_identity_change(self, identity: Optional[Identity]) -> None:
        if self._torn_down:
            return

        self._generation += 1
        generation = self._generation

        if identity is None:
            self._identity = None
            self._role = None
            self._resolving = False
            self._resolved = True
            self._publish()
            return

        self._identity = identity
        self._role = None
        self._resolving = True

        role = await self._lookup_role(identity)

        # A newer identity event (or teardown) superseded this lookup
        if generation != self._generation or self._torn_down:
            return

        self._role = role
        self._resolving = False
        self._resolved = True
        self._publish()

    async def _lookup_role(self, identity: Identity) -> str:
        try:
            return await self._repository.get_role(identity.uid)
        except NotFoundError:
            logger.info(f"No user document for uid={identity.uid}, using '{DEFAULT_ROLE}'")
            return DEFAULT_ROLE
        except DataAccessError as e:
            logger.warning(f"Role lookup failed for uid={identity.uid}: {e}")
            # sign_in reports this failure itself as AccessDenied
            if not self._authenticating:
                self._warnings.append(ROLE_LOOKUP_WARNING)
            return DEFAULT_ROLE

    # ============ Sign-in / sign-out ============

    async def sign_in(self, email: str, password: str, area: Area) -> Identity:
        """
        Authenticates and re-verifies the stored role for a login form.

        Authentication alone does not authorize: the role is read from the
        user's document and must match the area, otherwise the session is
        signed out before AccessDenied is raised.

        Args:
            email: Account email
            password: Account password
            area: Area whose login form was submitted

        Returns:
            The signed-in Identity

        Raises:
            AuthError: Bad credentials or backend refusal
            AccessDenied: Role mismatch, missing user document, or failed role lookup
        """
        await self.start()

        self._authenticating = True
        try:
            identity = await self._backend.authenticate(email.strip(), password)

            try:
                role: Optional[str] = await self._repository.get_role(identity.uid)
            except NotFoundError:
                role = None
            except DataAccessError as e:
                logger.warning(f"Role verification failed for uid={identity.uid}: {e}")
                await self._force_sign_out()
                raise AccessDenied(ROLE_LOOKUP_WARNING) from e

            try:
                verify_login_role(role, area)
            except AccessDenied:
                await self._force_sign_out()
                raise

            logger.info(f"Signed in uid={identity.uid} as '{role}'")
            return identity
        finally:
            self._authenticating = False

    async def sign_out(self) -> None:
        """
        Signs the current identity out.

        Raises:
            AuthError: If the backend fails to sign out
        """
        try:
            await self._backend.deauthenticate()
        except AuthError:
            raise
        except Exception as e:
            logger.exception("Sign-out failed")
            raise AuthError("Failed to sign out.") from e
        logger.info("Signed out")

    async def _force_sign_out(self) -> None:
        try:
            await self._backend.deauthenticate()
        except AuthError:
            logger.exception("Forced sign-out failed, clearing local session")

        # Listener may be missing (store not started) or the backend may have failed
        if self._identity is not None:
            await self._handle_identity_change(None)
