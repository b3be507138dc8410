import asyncio

import pytest

from cropview.models import AuthState, Identity
from cropview.services.access_policy import Area, Outcome, evaluate
from cropview.services.errors import AccessDenied, AuthError
from cropview.services.session_store import ROLE_LOOKUP_WARNING, SessionStore


async def test_loading_until_first_resolution(store):
    assert store.is_loading
    await store.start()
    assert not store.is_loading
    assert store.identity is None
    assert store.auth_state == AuthState.ANONYMOUS


async def test_start_is_idempotent(store, identity_backend):
    await store.start()
    await store.start()
    assert identity_backend.listener_count == 1


async def test_teardown_runs_once(store, identity_backend):
    await store.start()
    store.teardown()
    store.teardown()
    assert identity_backend.listener_count == 0
    assert store.is_torn_down
    with pytest.raises(RuntimeError):
        await store.start()


async def test_sign_in_resolves_role(store):
    identity = await store.sign_in("admin@example.com", "secret", Area.ADMIN_DASHBOARD)
    assert identity.uid == "u-admin"
    assert store.identity == identity
    assert store.role == "admin"
    assert store.auth_state == AuthState.AUTHENTICATED
    assert evaluate(store.identity, store.role, Area.ADMIN_DASHBOARD, store.is_loading).allowed


async def test_bad_credentials_raise_auth_error(store):
    with pytest.raises(AuthError) as exc:
        await store.sign_in("admin@example.com", "wrong", Area.ADMIN_DASHBOARD)
    assert not isinstance(exc.value, AccessDenied)
    assert store.identity is None
    assert store.auth_state == AuthState.ANONYMOUS


async def test_farmer_on_admin_login_is_denied_and_signed_out(store, identity_backend):
    with pytest.raises(AccessDenied, match="Only administrators"):
        await store.sign_in("farmer@example.com", "secret", Area.ADMIN_DASHBOARD)

    assert store.identity is None
    assert store.role is None
    assert identity_backend.current_identity() is None
    decision = evaluate(store.identity, store.role, Area.ADMIN_DASHBOARD, store.is_loading)
    assert decision.outcome == Outcome.REDIRECT
    assert decision.target == "/login"


async def test_admin_on_expert_login_is_denied(store):
    with pytest.raises(AccessDenied, match="Only experts"):
        await store.sign_in("admin@example.com", "secret", Area.EXPERT_DASHBOARD)
    assert store.identity is None


async def test_missing_user_document_is_denied(store):
    with pytest.raises(AccessDenied, match="User not found in the system."):
        await store.sign_in("ghost@example.com", "secret", Area.EXPERT_DASHBOARD)
    assert store.identity is None


async def test_role_lookup_failure_during_sign_in_is_denied(store, identity_backend, documents):
    documents.fail_reads = True
    with pytest.raises(AccessDenied, match=ROLE_LOOKUP_WARNING):
        await store.sign_in("expert@example.com", "secret", Area.EXPERT_DASHBOARD)
    assert store.identity is None
    assert identity_backend.current_identity() is None
    assert store.pop_warnings() == []


async def test_role_lookup_failure_degrades_to_farmer_with_warning(store, identity_backend, documents):
    await store.start()
    documents.fail_reads = True

    await identity_backend.authenticate("admin@example.com", "secret")

    assert store.identity.uid == "u-admin"
    assert store.role == "farmer"
    assert not store.is_loading
    assert store.pop_warnings() == [ROLE_LOOKUP_WARNING]
    assert store.pop_warnings() == []
    assert not evaluate(store.identity, store.role, Area.ADMIN_DASHBOARD).allowed


async def test_null_identity_event_redirects_gated_route(store, identity_backend):
    await store.sign_in("expert@example.com", "secret", Area.EXPERT_DASHBOARD)
    assert evaluate(store.identity, store.role, Area.EXPERT_DASHBOARD, store.is_loading).allowed

    await identity_backend.expire()

    decision = evaluate(store.identity, store.role, Area.EXPERT_DASHBOARD, store.is_loading)
    assert decision.outcome == Outcome.REDIRECT
    assert decision.target == "/expert-login"


async def test_sign_out(store, identity_backend):
    await store.sign_in("admin@example.com", "secret", Area.ADMIN_DASHBOARD)
    await store.sign_out()
    assert store.identity is None
    assert identity_backend.current_identity() is None


async def test_sign_out_failure_raises_auth_error(store, identity_backend, monkeypatch):
    await store.sign_in("admin@example.com", "secret", Area.ADMIN_DASHBOARD)

    async def broken():
        raise ConnectionError("offline")

    monkeypatch.setattr(identity_backend, "deauthenticate", broken)
    with pytest.raises(AuthError):
        await store.sign_out()


async def test_subscribers_receive_events(store, identity_backend):
    events = []
    unsubscribe = store.subscribe(events.append)
    await store.start()
    await store.sign_in("expert@example.com", "secret", Area.EXPERT_DASHBOARD)
    unsubscribe()
    unsubscribe()
    await store.sign_out()

    assert [(e.identity.uid if e.identity else None, e.role) for e in events] == [
        (None, None),
        ("u-expert", "expert"),
    ]


async def test_observe_streams_until_teardown(store, identity_backend):
    await store.start()
    received = []

    async def consume():
        async for event in store.observe():
            received.append(event)

    consumer = asyncio.create_task(consume())
    await asyncio.sleep(0)

    await identity_backend.authenticate("admin@example.com", "secret")
    await identity_backend.deauthenticate()
    store.teardown()
    await asyncio.wait_for(consumer, timeout=1)

    assert [e.role for e in received] == ["admin", None]
    assert received[0].identity == Identity(uid="u-admin", email="admin@example.com")


async def test_refresh_drops_expired_identity(identity_backend, repository):
    class ExpiringBackend(type(identity_backend)):
        async def check_expiry(self):
            await self.expire()

    backend = ExpiringBackend()
    backend.add_account("admin@example.com", "secret", "u-admin")
    store = SessionStore(backend, repository)
    await store.sign_in("admin@example.com", "secret", Area.ADMIN_DASHBOARD)

    await store.refresh()
    assert store.identity is None
    store.teardown()
