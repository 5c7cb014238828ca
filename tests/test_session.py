"""Tests for the session context and the local auth provider."""

import pytest

from eventnet.config import Table
from eventnet.errors import CollaboratorFailure, NotAuthorized
from eventnet.interfaces import AuthEvent, IAuthProvider
from eventnet.logging import user_id_var
from eventnet.session import LocalAuthProvider, SessionContext


@pytest.fixture
def auth(store):
    return LocalAuthProvider(store)


@pytest.fixture
def session(auth, store):
    context = SessionContext(auth, store)
    yield context
    context.close()


# =============================================================================
# LocalAuthProvider
# =============================================================================


def test_local_provider_satisfies_protocol(auth):
    assert isinstance(auth, IAuthProvider)


@pytest.mark.asyncio
async def test_sign_up_creates_profile_and_signs_in(auth, store):
    user = await auth.sign_up("Ada@Example.com", "analytical", "Ada Lovelace")

    assert user.email == "ada@example.com"
    assert await auth.current_user() == user
    rows = await store.select(Table.PROFILES, {"id": user.id})
    assert rows[0]["full_name"] == "Ada Lovelace"


@pytest.mark.asyncio
async def test_sign_up_twice_is_refused(auth):
    await auth.sign_up("ada@example.com", "analytical", "Ada Lovelace")

    with pytest.raises(NotAuthorized):
        await auth.sign_up("ada@example.com", "other", "Ada L.")


@pytest.mark.asyncio
async def test_sign_in_checks_password(auth):
    created = await auth.sign_up("ada@example.com", "analytical", "Ada Lovelace")
    await auth.sign_out()

    with pytest.raises(NotAuthorized):
        await auth.sign_in("ada@example.com", "wrong")
    with pytest.raises(NotAuthorized):
        await auth.sign_in("nobody@example.com", "analytical")
    assert await auth.current_user() is None

    user = await auth.sign_in("ada@example.com", "analytical")
    assert user.id == created.id


@pytest.mark.asyncio
async def test_impersonate_requires_existing_profile(auth, users):
    user = await auth.impersonate(users["grace"])
    assert user.id == users["grace"]
    assert user.email == "grace@example.com"

    with pytest.raises(NotAuthorized):
        await auth.impersonate("user-missing")


@pytest.mark.asyncio
async def test_listeners_receive_events_until_unsubscribed(auth, users):
    events = []

    async def listener(event, user):
        events.append((event, user.id if user else None))

    unsubscribe = auth.subscribe(listener)
    await auth.impersonate(users["ada"])
    await auth.sign_out()
    unsubscribe()
    await auth.impersonate(users["ada"])

    assert events == [(AuthEvent.SIGNED_IN, users["ada"]), (AuthEvent.SIGNED_OUT, None)]


# =============================================================================
# SessionContext
# =============================================================================


@pytest.mark.asyncio
async def test_initialize_signed_out(session):
    assert session.loading

    await session.initialize()

    assert not session.loading
    assert session.user is None
    assert not session.is_authenticated
    with pytest.raises(NotAuthorized):
        session.require_user_id()


@pytest.mark.asyncio
async def test_sign_in_loads_user_and_profile(session, auth, users):
    await auth.impersonate(users["grace"])

    assert session.require_user_id() == users["grace"]
    assert session.profile.full_name == "Grace Hopper"
    assert not session.loading
    assert user_id_var.get() == users["grace"]


@pytest.mark.asyncio
async def test_sign_up_through_session(session):
    user = await session.sign_up("alan@example.com", "enigma", "Alan Turing")

    assert session.user_id == user.id
    assert session.profile.display_name == "Alan Turing"
    assert session.profile.initials == "AT"


@pytest.mark.asyncio
async def test_sign_out_clears_state(session):
    await session.sign_up("alan@example.com", "enigma", "Alan Turing")

    await session.sign_out()

    assert session.user is None
    assert session.profile is None
    assert user_id_var.get() is None


@pytest.mark.asyncio
async def test_sign_in_after_sign_out(session):
    await session.sign_up("alan@example.com", "enigma", "Alan Turing")
    await session.sign_out()

    await session.sign_in("alan@example.com", "enigma")

    assert session.profile.full_name == "Alan Turing"


@pytest.mark.asyncio
async def test_initialize_logs_store_failures(session, auth, store, users):
    await auth.impersonate(users["ada"])
    session.clear()

    async def broken_select(*args, **kwargs):
        raise CollaboratorFailure("store offline")

    store.select = broken_select
    await session.initialize()

    assert session.user is None
    assert not session.loading


@pytest.mark.asyncio
async def test_update_profile_merges_into_cached_profile(session, auth, store, users):
    await auth.impersonate(users["ada"])

    profile = await session.update_profile(company="Babbage & Co", bio="First programmer")

    assert profile.company == "Babbage & Co"
    assert session.profile.bio == "First programmer"
    assert session.profile.full_name == "Ada Lovelace"
    rows = await store.select(Table.PROFILES, {"id": users["ada"]})
    assert rows[0]["company"] == "Babbage & Co"
    assert rows[0]["updated_at"] is not None


@pytest.mark.asyncio
async def test_update_profile_requires_sign_in(session):
    with pytest.raises(NotAuthorized):
        await session.update_profile(company="Nowhere")


@pytest.mark.asyncio
async def test_update_profile_rejects_protected_fields(session, auth, users):
    await auth.impersonate(users["ada"])

    with pytest.raises(ValueError):
        await session.update_profile(id="user-grace")


@pytest.mark.asyncio
async def test_closed_session_ignores_auth_events(session, auth, users):
    session.close()

    await auth.impersonate(users["ada"])

    assert session.user is None
