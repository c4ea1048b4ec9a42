import time
import threading
from urllib.parse import parse_qs, urlparse

import pytest

from AuthProbe.errors import (AuthorizationDenied, AuthorizationRequestExpired, InvalidPrincipal, SessionNotFound,
                              StateMismatch, TokenExchangeFailed, UserInfoFetchFailed)
from AuthProbe.flow import AuthFlowController
from AuthProbe.models import SessionState

from conftest import StubProvider


def start_login(controller, session_storage):
    session_id, _ = session_storage.create()
    instruction = controller.initiate_login(session_id)
    return session_id, instruction


def login(controller, session_storage):
    session_id, instruction = start_login(controller, session_storage)
    controller.complete_login(session_id, {'code': 'code-1', 'state': instruction.state})
    return session_id


def test_initiate_login_moves_to_pending(controller, session_storage):
    session_id, instruction = start_login(controller, session_storage)
    query = parse_qs(urlparse(instruction.url).query)
    assert query['state'] == [instruction.state]
    assert query['scope'] == ['openid profile email']
    session = session_storage.get(session_id)
    assert session.status == SessionState.PENDING
    assert session.auth_request.state == instruction.state
    assert controller.is_authenticated(session_id) is False


def test_initiate_login_generates_fresh_state(controller, session_storage):
    session_id, first = start_login(controller, session_storage)
    second = controller.initiate_login(session_id)
    assert first.state != second.state
    assert session_storage.get(session_id).auth_request.state == second.state


def test_initiate_login_with_custom_scopes(controller, session_storage):
    session_id, _ = session_storage.create()
    instruction = controller.initiate_login(session_id, scopes=['openid', 'groups'])
    assert parse_qs(urlparse(instruction.url).query)['scope'] == ['openid groups']
    assert session_storage.get(session_id).auth_request.scopes == ('openid', 'groups')


def test_initiate_login_without_session(controller):
    with pytest.raises(SessionNotFound):
        controller.initiate_login('unknown')


def test_complete_login(controller, session_storage, provider):
    session_id, instruction = start_login(controller, session_storage)
    principal = controller.complete_login(session_id, {'code': 'code-1', 'state': instruction.state})

    assert principal.subject == 'u1'
    assert principal.email == 'u1@example.com'
    assert controller.is_authenticated(session_id) is True
    session = session_storage.get(session_id)
    assert session.status == SessionState.AUTHENTICATED
    assert session.auth_request is None
    assert controller.get_principal(session_id) == principal
    # Exactly one token exchange and one user info fetch
    assert [c[0] for c in provider.calls] == ['authorize', 'token', 'userinfo']
    assert ('userinfo', 'access-code-1') in provider.calls


def test_principal_reads_well_known_claims(session_storage):
    provider = StubProvider(claims={'sub': 'u2', 'preferred_username': 'jdoe', 'name': 'J. Doe',
                                    'email': 'j@example.com', 'groups': ['admins', 'users'], 'extra': 1})
    controller = AuthFlowController(provider, session_storage)
    session_id, instruction = start_login(controller, session_storage)
    principal = controller.complete_login(session_id, {'code': 'c', 'state': instruction.state})
    assert principal.preferred_username == 'jdoe'
    assert principal.name == 'J. Doe'
    assert principal.groups == ('admins', 'users')
    assert principal.claims['extra'] == 1


def test_state_mismatch(controller, session_storage, provider):
    session_id, instruction = start_login(controller, session_storage)
    with pytest.raises(StateMismatch):
        controller.complete_login(session_id, {'code': 'code-1', 'state': 'forged'})
    assert session_storage.get(session_id).status == SessionState.ANONYMOUS
    assert controller.is_authenticated(session_id) is False
    # The provider is never contacted
    assert [c[0] for c in provider.calls] == ['authorize']


def test_missing_state(controller, session_storage):
    session_id, _ = start_login(controller, session_storage)
    with pytest.raises(StateMismatch):
        controller.complete_login(session_id, {'code': 'code-1'})


def test_callback_without_pending_login(controller, session_storage):
    session_id, _ = session_storage.create()
    with pytest.raises(StateMismatch):
        controller.complete_login(session_id, {'code': 'code-1', 'state': 'anything'})


def test_callback_for_unknown_session(controller):
    with pytest.raises(StateMismatch):
        controller.complete_login('unknown', {'code': 'code-1', 'state': 'anything'})


def test_mismatch_burns_the_pending_login(controller, session_storage):
    session_id, instruction = start_login(controller, session_storage)
    with pytest.raises(StateMismatch):
        controller.complete_login(session_id, {'code': 'code-1', 'state': 'forged'})
    with pytest.raises(StateMismatch):
        controller.complete_login(session_id, {'code': 'code-1', 'state': instruction.state})


def test_replayed_callback_is_rejected(controller, session_storage, provider):
    session_id, instruction = start_login(controller, session_storage)
    params = {'code': 'code-1', 'state': instruction.state}
    controller.complete_login(session_id, params)
    with pytest.raises(StateMismatch):
        controller.complete_login(session_id, params)
    assert [c[0] for c in provider.calls].count('token') == 1


def test_concurrent_callbacks_succeed_at_most_once(session_storage):
    class SlowProvider(StubProvider):
        def exchange_code_for_token(self, code):
            time.sleep(0.05)
            return super().exchange_code_for_token(code)

    controller = AuthFlowController(SlowProvider(), session_storage)
    session_id, instruction = start_login(controller, session_storage)
    params = {'code': 'code-1', 'state': instruction.state}
    outcomes = []
    barrier = threading.Barrier(4)

    def callback():
        barrier.wait()
        try:
            controller.complete_login(session_id, params)
            outcomes.append('ok')
        except StateMismatch:
            outcomes.append('mismatch')

    threads = [threading.Thread(target=callback) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count('ok') == 1
    assert outcomes.count('mismatch') == 3


def test_expired_pending_login(provider, session_storage):
    controller = AuthFlowController(provider, session_storage, login_timeout=60)
    session_id, instruction = start_login(controller, session_storage)

    def age(session):
        request = session.auth_request
        session.auth_request = type(request)(state=request.state, scopes=request.scopes,
                                             created_at=request.created_at - 120)

    session_storage.update(session_id, age)
    assert controller.get_state(session_id) == SessionState.ANONYMOUS
    with pytest.raises(AuthorizationRequestExpired):
        controller.complete_login(session_id, {'code': 'code-1', 'state': instruction.state})
    assert session_storage.get(session_id).status == SessionState.ANONYMOUS


def test_token_exchange_failure(failing_token_provider, session_storage):
    controller = AuthFlowController(failing_token_provider, session_storage)
    session_id, instruction = start_login(controller, session_storage)
    with pytest.raises(TokenExchangeFailed):
        controller.complete_login(session_id, {'code': 'code-1', 'state': instruction.state})
    assert session_storage.get(session_id).status == SessionState.ANONYMOUS
    assert [c[0] for c in failing_token_provider.calls] == ['authorize', 'token']


def test_user_info_failure(failing_userinfo_provider, session_storage):
    controller = AuthFlowController(failing_userinfo_provider, session_storage)
    session_id, instruction = start_login(controller, session_storage)
    with pytest.raises(UserInfoFetchFailed):
        controller.complete_login(session_id, {'code': 'code-1', 'state': instruction.state})
    assert session_storage.get(session_id).status == SessionState.ANONYMOUS


@pytest.mark.parametrize('claims', [{}, {'email': 'u1@example.com'}, {'sub': ''}, {'sub': 42}])
def test_invalid_principal(claims, session_storage):
    controller = AuthFlowController(StubProvider(claims=claims), session_storage)
    session_id, instruction = start_login(controller, session_storage)
    with pytest.raises(InvalidPrincipal):
        controller.complete_login(session_id, {'code': 'code-1', 'state': instruction.state})
    assert controller.is_authenticated(session_id) is False


def test_provider_error_in_callback(controller, session_storage, provider):
    session_id, instruction = start_login(controller, session_storage)
    with pytest.raises(AuthorizationDenied):
        controller.complete_login(session_id, {'error': 'access_denied', 'state': instruction.state})
    assert 'token' not in [c[0] for c in provider.calls]


def test_missing_code(controller, session_storage):
    session_id, instruction = start_login(controller, session_storage)
    with pytest.raises(AuthorizationDenied):
        controller.complete_login(session_id, {'state': instruction.state})


def test_failed_relogin_drops_previous_principal(controller, session_storage):
    session_id = login(controller, session_storage)
    controller.initiate_login(session_id)
    with pytest.raises(StateMismatch):
        controller.complete_login(session_id, {'code': 'code-2', 'state': 'forged'})
    assert controller.get_principal(session_id) is None


def test_relogin_replaces_principal(session_storage):
    provider = StubProvider()
    controller = AuthFlowController(provider, session_storage)
    session_id = login(controller, session_storage)
    provider.claims = {'sub': 'u2'}
    instruction = controller.initiate_login(session_id)
    controller.complete_login(session_id, {'code': 'code-2', 'state': instruction.state})
    assert controller.get_principal(session_id).subject == 'u2'


def test_logout(controller, session_storage):
    session_id = login(controller, session_storage)
    controller.logout(session_id)
    assert controller.is_authenticated(session_id) is False
    assert controller.get_principal(session_id) is None
    assert controller.get_state(session_id) == SessionState.ANONYMOUS


def test_logout_is_idempotent(controller, session_storage):
    session_id = login(controller, session_storage)
    controller.logout(session_id)
    state_after_one = (controller.is_authenticated(session_id), controller.get_state(session_id),
                       session_storage.get(session_id))
    controller.logout(session_id)
    state_after_two = (controller.is_authenticated(session_id), controller.get_state(session_id),
                       session_storage.get(session_id))
    assert state_after_one == state_after_two


@pytest.mark.parametrize('prepare', ['anonymous', 'pending', 'authenticated', 'unknown'])
def test_not_authenticated_after_logout(controller, session_storage, prepare):
    if prepare == 'unknown':
        session_id = 'unknown'
    elif prepare == 'authenticated':
        session_id = login(controller, session_storage)
    else:
        session_id, _ = session_storage.create()
        if prepare == 'pending':
            controller.initiate_login(session_id)
    controller.logout(session_id)
    assert controller.is_authenticated(session_id) is False


def test_logout_swallows_store_errors(controller, session_storage, monkeypatch):
    session_id = login(controller, session_storage)

    def broken(*args, **kwargs):
        from AuthProbe.errors import SessionStoreUnavailable
        raise SessionStoreUnavailable('redis down')

    monkeypatch.setattr(session_storage, 'get', broken)
    controller.logout(session_id)


def test_logout_during_concurrent_request(controller, session_storage):
    session_id = login(controller, session_storage)
    started = threading.Event()

    def slow_touch(session):
        started.set()
        time.sleep(0.2)
        session.last_seen = time.time()

    worker = threading.Thread(target=session_storage.update, args=(session_id, slow_touch))
    worker.start()
    started.wait(5)
    controller.logout(session_id)
    assert controller.is_authenticated(session_id) is False
    worker.join()
    assert controller.is_authenticated(session_id) is False
    assert controller.get_state(session_id) == SessionState.ANONYMOUS
