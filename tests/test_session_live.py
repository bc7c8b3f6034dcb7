"""
SessionManager against a scripted live identity client: state machine, timeouts,
stale-result handling and error propagation.
"""

from __future__ import annotations

import asyncio

import pytest

from hostedauth.errors import InvalidParameterError, NotAuthorizedError, ProviderError, UsernameExistsError
from hostedauth.models import CheckOutcome, CurrentUser, SessionState, SessionStatus, SignInResult
from hostedauth.session import SESSION_CHECK_TIMEOUT_SECONDS, SessionManager


def _manager(cfg, client, location, **kwargs) -> SessionManager:
    return SessionManager(cfg, client=client, location=location, **kwargs)


def test_live_manager_uses_supplied_client(live_cfg, location, fake_client) -> None:
    mgr = _manager(live_cfg, fake_client, location)
    assert mgr.dev_mode is False
    assert mgr.client is fake_client
    assert mgr.check_timeout == SESSION_CHECK_TIMEOUT_SECONDS == 5.0
    assert mgr.state == SessionState(status=SessionStatus.INITIALIZING, user=None, loading=True)


@pytest.mark.asyncio
async def test_initialize_without_session_is_unauthenticated(live_cfg, location, fake_client) -> None:
    """get_current_user rejects: signed out, not loading, no error raised."""
    mgr = _manager(live_cfg, fake_client, location)

    state = await mgr.initialize()

    assert state.status is SessionStatus.UNAUTHENTICATED
    assert state.user is None
    assert state.loading is False
    fake_client.fetch_session.assert_not_awaited()


@pytest.mark.asyncio
async def test_initialize_with_session_builds_profile(live_cfg, location, fake_client) -> None:
    fake_client.sign_in_as("erin", email="erin@corp.test", sub="sub-erin")
    mgr = _manager(live_cfg, fake_client, location)

    await mgr.initialize()

    assert mgr.status is SessionStatus.AUTHENTICATED
    assert mgr.user is not None
    assert mgr.user.username == "erin"
    assert mgr.user.email == "erin@corp.test"
    assert mgr.user.name == "erin@corp.test"  # no name attribute: falls back to email
    assert mgr.user.subject_id == "sub-erin"


@pytest.mark.asyncio
async def test_name_falls_back_to_username(live_cfg, location, fake_client) -> None:
    fake_client.sign_in_as("frank")
    mgr = _manager(live_cfg, fake_client, location)
    await mgr.initialize()
    assert mgr.user is not None
    assert mgr.user.name == "frank"
    assert mgr.user.email == ""
    assert mgr.user.subject_id == ""


@pytest.mark.asyncio
async def test_hanging_provider_times_out_to_unauthenticated(live_cfg, location, fake_client) -> None:
    async def _hang():
        await asyncio.Event().wait()

    fake_client.get_current_user.side_effect = _hang
    mgr = _manager(live_cfg, fake_client, location, check_timeout=0.05)

    result = await mgr.check_session()

    assert result.outcome is CheckOutcome.TIMED_OUT
    assert mgr.status is SessionStatus.UNAUTHENTICATED
    assert mgr.user is None
    assert mgr.loading is False


@pytest.mark.asyncio
async def test_malformed_current_user_collapses_to_unauthenticated(live_cfg, location, fake_client) -> None:
    fake_client.get_current_user.side_effect = None
    fake_client.get_current_user.return_value = CurrentUser(username="")
    mgr = _manager(live_cfg, fake_client, location)

    result = await mgr.check_session()

    assert result.outcome is CheckOutcome.FAILED
    assert mgr.status is SessionStatus.UNAUTHENTICATED


@pytest.mark.asyncio
async def test_provider_failure_collapses_to_unauthenticated(live_cfg, location, fake_client) -> None:
    fake_client.get_current_user.side_effect = ProviderError("503 from provider")
    mgr = _manager(live_cfg, fake_client, location)

    result = await mgr.check_session()

    assert result.outcome is CheckOutcome.FAILED
    assert "503" in (result.error or "")
    assert mgr.status is SessionStatus.UNAUTHENTICATED
    assert mgr.loading is False


@pytest.mark.asyncio
async def test_cancelled_check_still_settles(live_cfg, location, fake_client) -> None:
    async def _hang():
        await asyncio.Event().wait()

    fake_client.get_current_user.side_effect = _hang
    mgr = _manager(live_cfg, fake_client, location)

    task = asyncio.create_task(mgr.check_session())
    await asyncio.sleep(0)
    assert mgr.status is SessionStatus.CHECKING_SESSION
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert mgr.status is SessionStatus.UNAUTHENTICATED
    assert mgr.loading is False


@pytest.mark.asyncio
async def test_sign_in_refreshes_session(live_cfg, location, fake_client) -> None:
    mgr = _manager(live_cfg, fake_client, location)
    await mgr.initialize()

    async def _sign_in(username, password):
        fake_client.sign_in_as(username, email=f"{username}@corp.test", name="Bob B", sub="sub-bob")
        return SignInResult(is_signed_in=True)

    fake_client.sign_in.side_effect = _sign_in

    result = await mgr.sign_in("bob", "pw")

    assert result.is_signed_in is True
    fake_client.sign_in.assert_awaited_once_with("bob", "pw")
    assert mgr.status is SessionStatus.AUTHENTICATED
    assert mgr.user is not None
    assert mgr.user.username == "bob"
    assert mgr.user.name == "Bob B"
    assert mgr.loading is False


@pytest.mark.asyncio
async def test_sign_in_rejected_propagates_and_keeps_state(live_cfg, location, fake_client) -> None:
    mgr = _manager(live_cfg, fake_client, location)
    await mgr.initialize()
    fake_client.sign_in.side_effect = NotAuthorizedError("Incorrect username or password.")

    with pytest.raises(NotAuthorizedError):
        await mgr.sign_in("bob", "wrong")

    assert mgr.status is SessionStatus.UNAUTHENTICATED
    assert mgr.loading is False


@pytest.mark.asyncio
async def test_sign_in_requires_username_and_password(live_cfg, location, fake_client) -> None:
    mgr = _manager(live_cfg, fake_client, location)
    with pytest.raises(InvalidParameterError):
        await mgr.sign_in("   ", "pw")
    with pytest.raises(InvalidParameterError):
        await mgr.sign_in("bob", "")
    fake_client.sign_in.assert_not_awaited()


@pytest.mark.asyncio
async def test_sign_in_challenge_skips_session_check(live_cfg, location, fake_client) -> None:
    fake_client.sign_in.return_value = SignInResult(is_signed_in=False, next_step="NEW_PASSWORD_REQUIRED")
    mgr = _manager(live_cfg, fake_client, location)

    result = await mgr.sign_in("bob", "pw")

    assert result.next_step == "NEW_PASSWORD_REQUIRED"
    fake_client.get_current_user.assert_not_awaited()


@pytest.mark.asyncio
async def test_sign_up_passes_attributes(live_cfg, location, fake_client) -> None:
    mgr = _manager(live_cfg, fake_client, location)

    result = await mgr.sign_up(" carol ", "pw", email="carol@corp.test", name="Carol")

    assert result.is_sign_up_complete is False
    assert result.next_step == "CONFIRM_SIGN_UP"
    fake_client.sign_up.assert_awaited_once_with("carol", "pw", {"email": "carol@corp.test", "name": "Carol"})


@pytest.mark.asyncio
async def test_duplicate_sign_up_propagates(live_cfg, location, fake_client) -> None:
    fake_client.sign_up.side_effect = UsernameExistsError("User already exists")
    mgr = _manager(live_cfg, fake_client, location)
    with pytest.raises(UsernameExistsError):
        await mgr.sign_up("carol", "pw")


@pytest.mark.asyncio
async def test_confirm_and_resend_pass_through(live_cfg, location, fake_client) -> None:
    mgr = _manager(live_cfg, fake_client, location)
    await mgr.confirm_sign_up("carol", " 123456 ")
    fake_client.confirm_sign_up.assert_awaited_once_with("carol", "123456")
    await mgr.resend_confirmation_code("carol")
    fake_client.resend_confirmation_code.assert_awaited_once_with("carol")

    with pytest.raises(InvalidParameterError):
        await mgr.confirm_sign_up("carol", "")


@pytest.mark.asyncio
async def test_sign_out_twice_never_raises(live_cfg, location, fake_client) -> None:
    fake_client.sign_in_as("bob")
    mgr = _manager(live_cfg, fake_client, location)
    await mgr.initialize()
    assert mgr.status is SessionStatus.AUTHENTICATED

    await mgr.sign_out()
    assert mgr.status is SessionStatus.UNAUTHENTICATED
    assert mgr.user is None

    fake_client.sign_out.side_effect = ProviderError("network down")
    await mgr.sign_out()
    assert mgr.status is SessionStatus.UNAUTHENTICATED
    assert mgr.user is None
    assert mgr.loading is False
    assert fake_client.sign_out.await_count == 2


@pytest.mark.asyncio
async def test_access_token_only_when_authenticated(live_cfg, location, fake_client) -> None:
    mgr = _manager(live_cfg, fake_client, location)
    await mgr.initialize()
    assert await mgr.get_access_token() is None
    fake_client.fetch_session.assert_not_awaited()

    fake_client.sign_in_as("bob")
    await mgr.check_session()
    assert await mgr.get_access_token() == "access-bob"

    fake_client.fetch_session.side_effect = ProviderError("refresh failed")
    assert await mgr.get_access_token() is None


@pytest.mark.asyncio
async def test_redirect_sign_in_navigates_without_check(live_cfg, location, fake_client) -> None:
    mgr = _manager(live_cfg, fake_client, location)
    result = await mgr.sign_in_with_redirect()
    assert result.next_step == "REDIRECT"
    fake_client.get_current_user.assert_not_awaited()

    fake_client.sign_in_with_redirect.side_effect = ProviderError("Hosted UI is not configured")
    with pytest.raises(ProviderError):
        await mgr.sign_in_with_redirect()


@pytest.mark.asyncio
async def test_stale_check_does_not_override_sign_out(live_cfg, location, fake_client) -> None:
    release = asyncio.Event()

    async def _slow_user():
        await release.wait()
        return CurrentUser(username="alice")

    fake_client.get_current_user.side_effect = _slow_user
    fake_client.fetch_user_attributes.side_effect = None
    fake_client.fetch_user_attributes.return_value = {"email": "alice@corp.test"}
    mgr = _manager(live_cfg, fake_client, location)

    task = asyncio.create_task(mgr.initialize())
    await asyncio.sleep(0)
    assert mgr.status is SessionStatus.CHECKING_SESSION

    await mgr.sign_out()
    assert mgr.status is SessionStatus.UNAUTHENTICATED

    release.set()
    await task
    assert mgr.status is SessionStatus.UNAUTHENTICATED
    assert mgr.user is None
    assert mgr.loading is False


@pytest.mark.asyncio
async def test_newer_sign_in_wins_over_older_check(live_cfg, location, fake_client) -> None:
    release = asyncio.Event()
    calls = {"n": 0}

    async def _user():
        calls["n"] += 1
        if calls["n"] == 1:
            await release.wait()
            return CurrentUser(username="alice")
        return CurrentUser(username="bob")

    fake_client.get_current_user.side_effect = _user
    fake_client.fetch_user_attributes.side_effect = None
    fake_client.fetch_user_attributes.return_value = {}
    mgr = _manager(live_cfg, fake_client, location)

    first = asyncio.create_task(mgr.initialize())
    await asyncio.sleep(0)
    await mgr.sign_in("bob", "pw")
    assert mgr.user is not None and mgr.user.username == "bob"

    release.set()
    await first
    assert mgr.status is SessionStatus.AUTHENTICATED
    assert mgr.user is not None and mgr.user.username == "bob"
    assert mgr.loading is False


@pytest.mark.asyncio
async def test_revalidation_keeps_user_visible(live_cfg, location, fake_client) -> None:
    fake_client.sign_in_as("bob")
    mgr = _manager(live_cfg, fake_client, location)
    await mgr.initialize()

    seen = []
    mgr.subscribe(seen.append)
    await mgr.check_session()

    assert [s.status for s in seen] == [SessionStatus.AUTHENTICATED, SessionStatus.AUTHENTICATED]
    assert [s.loading for s in seen] == [True, False]
    assert all(s.user is not None for s in seen)


@pytest.mark.asyncio
async def test_subscribers_see_every_transition(live_cfg, location, fake_client) -> None:
    mgr = _manager(live_cfg, fake_client, location)
    seen = []
    unsubscribe = mgr.subscribe(seen.append)

    def _broken(_state):
        raise RuntimeError("listener bug")

    mgr.subscribe(_broken)

    await mgr.initialize()

    assert [(s.status, s.loading) for s in seen] == [
        (SessionStatus.CHECKING_SESSION, True),
        (SessionStatus.UNAUTHENTICATED, False),
    ]
    unsubscribe()
    fake_client.sign_in_as("bob")
    await mgr.check_session()
    assert len(seen) == 2
    assert mgr.status is SessionStatus.AUTHENTICATED


@pytest.mark.asyncio
async def test_user_present_iff_authenticated(live_cfg, location, fake_client) -> None:
    mgr = _manager(live_cfg, fake_client, location)
    seen = []
    mgr.subscribe(seen.append)

    await mgr.initialize()
    fake_client.sign_in_as("bob")
    await mgr.sign_in("bob", "pw")
    await mgr.sign_out()

    assert seen
    for s in seen:
        assert (s.user is not None) == (s.status is SessionStatus.AUTHENTICATED)
