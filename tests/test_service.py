"""Unit tests for auth/service.py -- the register / sign-in / refresh / sign-out lifecycle.

Uses the in-memory db, low-cost hasher and FakeClock from conftest, so expiry
is exercised by moving the clock rather than by sleeping.
"""

from datetime import timedelta

import pytest
from sqlalchemy import text

from auth.errors import AuthError, ErrorKind
from auth.service import AuthService


def _register(service: AuthService, name: str = "alice", password: str = "secret1"):
    return service.register(name, f"{name}@x.com", password)


def _expect(kind: ErrorKind, fn, *args):
    with pytest.raises(AuthError) as excinfo:
        fn(*args)
    assert excinfo.value.kind is kind
    return excinfo.value


# ---------------------------------------------------------------------------
# Register
# ---------------------------------------------------------------------------


class TestRegister:
    def test_returns_user_and_token_pair(self, service: AuthService) -> None:
        result = _register(service)
        assert result.user.id is not None
        assert result.user.username == "alice"
        assert result.user.email == "alice@x.com"
        assert result.user.is_active is True
        assert result.access_token and result.refresh_token

    def test_stores_hash_not_plaintext(self, service: AuthService) -> None:
        _register(service, password="secret1")
        user = service.users.get_by_email("alice@x.com")
        assert user.hashed_password != "secret1"
        assert service.hasher.verify("secret1", user.hashed_password)

    def test_persists_refresh_token_with_configured_ttl(self, service: AuthService, clock) -> None:
        result = _register(service)
        record = service.refresh_tokens.find_active(result.refresh_token, result.user.id)
        assert record is not None
        assert record.expires_at == clock() + timedelta(days=7)

    def test_normalizes_email_and_username(self, service: AuthService) -> None:
        result = service.register("  alice ", " Alice@X.com ", "secret1")
        assert result.user.username == "alice"
        assert result.user.email == "alice@x.com"

    def test_duplicate_email(self, service: AuthService) -> None:
        _register(service)
        err = _expect(ErrorKind.DUPLICATE_EMAIL, service.register, "other", "alice@x.com", "secret1")
        assert err.status == 400
        assert err.message == "User already exists"

    def test_duplicate_email_ignores_case(self, service: AuthService) -> None:
        _register(service)
        _expect(ErrorKind.DUPLICATE_EMAIL, service.register, "other", "ALICE@x.com", "secret1")

    def test_duplicate_username(self, service: AuthService) -> None:
        _register(service)
        err = _expect(ErrorKind.DUPLICATE_USERNAME, service.register, "alice", "new@x.com", "secret1")
        assert err.message == "Username already taken"

    def test_duplicate_username_ignores_case(self, service: AuthService) -> None:
        _register(service)
        _expect(ErrorKind.DUPLICATE_USERNAME, service.register, "ALICE", "new@x.com", "secret1")

    def test_collision_on_both_reports_email(self, service: AuthService) -> None:
        _register(service)
        _expect(ErrorKind.DUPLICATE_EMAIL, service.register, "alice", "alice@x.com", "secret1")

    def test_failed_session_rolls_back_user(self, service: AuthService, monkeypatch) -> None:
        def boom(payload):
            raise RuntimeError("signer down")

        monkeypatch.setattr(service.signer, "sign_refresh_token", boom)
        with pytest.raises(RuntimeError):
            _register(service)
        assert service.users.get_by_email("alice@x.com") is None

        monkeypatch.undo()
        assert _register(service).user.username == "alice"


# ---------------------------------------------------------------------------
# Authenticate
# ---------------------------------------------------------------------------


class TestAuthenticate:
    def test_correct_credentials(self, service: AuthService) -> None:
        registered = _register(service)
        result = service.authenticate("alice@x.com", "secret1")
        assert result.user.id == registered.user.id
        assert result.refresh_token != registered.refresh_token
        assert result.access_token != registered.access_token
        assert service.refresh_tokens.find_active(result.refresh_token, result.user.id) is not None

    def test_email_lookup_ignores_case(self, service: AuthService) -> None:
        _register(service)
        assert service.authenticate("ALICE@X.COM", "secret1").user.username == "alice"

    def test_unknown_email_and_wrong_password_are_indistinguishable(self, service: AuthService) -> None:
        _register(service)
        unknown = _expect(ErrorKind.INVALID_CREDENTIALS, service.authenticate, "nobody@x.com", "secret1")
        wrong = _expect(ErrorKind.INVALID_CREDENTIALS, service.authenticate, "alice@x.com", "wrong-pw")
        assert unknown.status == wrong.status == 401
        assert unknown.message == wrong.message == "Invalid email or password"
        assert unknown.details is None and wrong.details is None

    def test_unknown_email_still_runs_bcrypt(self, service: AuthService, monkeypatch) -> None:
        calls = []
        monkeypatch.setattr(service.hasher, "verify_dummy", lambda pw: calls.append(pw))
        _expect(ErrorKind.INVALID_CREDENTIALS, service.authenticate, "nobody@x.com", "secret1")
        assert calls == ["secret1"]

    def test_inactive_account(self, service: AuthService) -> None:
        _register(service)
        service.set_active("alice@x.com", False)
        err = _expect(ErrorKind.ACCOUNT_INACTIVE, service.authenticate, "alice@x.com", "secret1")
        assert err.details == "Please contact support"

    def test_each_sign_in_opens_a_separate_session(self, service: AuthService) -> None:
        registered = _register(service)
        service.authenticate("alice@x.com", "secret1")
        service.authenticate("alice@x.com", "secret1")
        assert len(service.refresh_tokens.list_for_user(registered.user.id)) == 3


# ---------------------------------------------------------------------------
# Refresh
# ---------------------------------------------------------------------------


class TestRotateAccessToken:
    def test_returns_valid_access_token(self, service: AuthService) -> None:
        result = _register(service)
        access = service.rotate_access_token(result.refresh_token)
        payload = service.signer.verify_access_token(access)
        assert payload.user_id == result.user.id
        assert payload.username == "alice"

    def test_refresh_token_survives_use(self, service: AuthService) -> None:
        result = _register(service)
        service.rotate_access_token(result.refresh_token)
        assert service.rotate_access_token(result.refresh_token)

    @pytest.mark.parametrize("token", [None, ""])
    def test_missing_token(self, service: AuthService, token) -> None:
        err = _expect(ErrorKind.MISSING_TOKEN, service.rotate_access_token, token)
        assert err.status == 400

    def test_garbage_token(self, service: AuthService) -> None:
        _expect(ErrorKind.INVALID_REFRESH_TOKEN, service.rotate_access_token, "not.a.jwt")

    def test_access_token_is_not_accepted(self, service: AuthService) -> None:
        result = _register(service)
        _expect(ErrorKind.INVALID_REFRESH_TOKEN, service.rotate_access_token, result.access_token)

    def test_validly_signed_but_never_stored(self, service: AuthService) -> None:
        result = _register(service)
        payload = service.signer.verify_refresh_token(result.refresh_token)
        unknown = service.signer.sign_refresh_token(payload)
        err = _expect(ErrorKind.INVALID_REFRESH_TOKEN, service.rotate_access_token, unknown)
        assert err.details == "Token not found or revoked"

    def test_expired_jwt_is_invalid(self, service: AuthService, clock) -> None:
        result = _register(service)
        clock.advance(days=7)
        _expect(ErrorKind.INVALID_REFRESH_TOKEN, service.rotate_access_token, result.refresh_token)

    def test_expired_stored_record(self, service: AuthService, clock) -> None:
        result = _register(service)
        past = (clock() - timedelta(seconds=1)).isoformat(timespec="microseconds")
        with service.db.transaction() as conn:
            conn.execute(
                text("UPDATE refresh_tokens SET expires_at = :ts WHERE token = :tok"),
                {"ts": past, "tok": result.refresh_token},
            )
        err = _expect(ErrorKind.REFRESH_TOKEN_EXPIRED, service.rotate_access_token, result.refresh_token)
        assert err.status == 401

    def test_inactive_user(self, service: AuthService) -> None:
        result = _register(service)
        service.users.set_active(result.user.id, False)
        _expect(ErrorKind.USER_INACTIVE_OR_MISSING, service.rotate_access_token, result.refresh_token)


# ---------------------------------------------------------------------------
# Sign out
# ---------------------------------------------------------------------------


class TestSignOut:
    def test_revoked_token_cannot_refresh(self, service: AuthService) -> None:
        result = _register(service)
        service.sign_out(result.refresh_token, result.user.id)
        _expect(ErrorKind.INVALID_REFRESH_TOKEN, service.rotate_access_token, result.refresh_token)

    def test_sign_out_is_idempotent(self, service: AuthService) -> None:
        result = _register(service)
        service.sign_out(result.refresh_token, result.user.id)
        service.sign_out(result.refresh_token, result.user.id)

    def test_unknown_token_is_accepted(self, service: AuthService) -> None:
        result = _register(service)
        service.sign_out("never-issued", result.user.id)

    def test_missing_token(self, service: AuthService) -> None:
        result = _register(service)
        _expect(ErrorKind.MISSING_TOKEN, service.sign_out, None, result.user.id)

    def test_other_user_cannot_revoke(self, service: AuthService) -> None:
        alice = _register(service, "alice")
        bob = _register(service, "bob")
        service.sign_out(alice.refresh_token, bob.user.id)
        assert service.rotate_access_token(alice.refresh_token)

    def test_sign_out_leaves_other_sessions(self, service: AuthService) -> None:
        first = _register(service)
        second = service.authenticate("alice@x.com", "secret1")
        service.sign_out(first.refresh_token, first.user.id)
        assert service.rotate_access_token(second.refresh_token)

    def test_sign_out_everywhere(self, service: AuthService) -> None:
        first = _register(service)
        second = service.authenticate("alice@x.com", "secret1")
        assert service.sign_out_everywhere(first.user.id) == 2
        for token in (first.refresh_token, second.refresh_token):
            _expect(ErrorKind.INVALID_REFRESH_TOKEN, service.rotate_access_token, token)
        assert service.sign_out_everywhere(first.user.id) == 0


# ---------------------------------------------------------------------------
# Profile and maintenance
# ---------------------------------------------------------------------------


class TestProfileAndMaintenance:
    def test_get_current_user(self, service: AuthService) -> None:
        result = _register(service)
        user = service.get_current_user(result.user.id)
        assert user.username == "alice"
        assert user.created_at

    def test_get_current_user_not_found(self, service: AuthService) -> None:
        err = _expect(ErrorKind.NOT_FOUND, service.get_current_user, 999)
        assert err.status == 404

    def test_deactivation_revokes_sessions(self, service: AuthService) -> None:
        result = _register(service)
        summary = service.set_active("alice@x.com", False)
        assert summary.is_active is False
        assert all(t.is_revoked for t in service.refresh_tokens.list_for_user(result.user.id))

    def test_reactivation_allows_sign_in(self, service: AuthService) -> None:
        _register(service)
        service.set_active("alice@x.com", False)
        assert service.set_active("ALICE@x.com", True).is_active is True
        assert service.authenticate("alice@x.com", "secret1")

    def test_set_password_replaces_hash_and_ends_sessions(self, service: AuthService) -> None:
        old = _register(service)
        service.set_password("alice@x.com", "n3w-secret")
        _expect(ErrorKind.INVALID_CREDENTIALS, service.authenticate, "alice@x.com", "secret1")
        assert service.authenticate("alice@x.com", "n3w-secret")
        _expect(ErrorKind.INVALID_REFRESH_TOKEN, service.rotate_access_token, old.refresh_token)

    def test_set_password_unknown_email(self, service: AuthService) -> None:
        _expect(ErrorKind.NOT_FOUND, service.set_password, "nobody@x.com", "n3w-secret")

    def test_set_active_unknown_email(self, service: AuthService) -> None:
        _expect(ErrorKind.NOT_FOUND, service.set_active, "nobody@x.com", False)

    def test_purge_expired_tokens(self, service: AuthService, clock) -> None:
        result = _register(service)
        clock.advance(days=3)
        fresh = service.authenticate("alice@x.com", "secret1")
        clock.advance(days=4)

        assert service.purge_expired_tokens() == 1
        remaining = service.refresh_tokens.list_for_user(result.user.id)
        assert [t.token for t in remaining] == [fresh.refresh_token]


# ---------------------------------------------------------------------------
# End to end
# ---------------------------------------------------------------------------


def test_full_session_lifecycle(service: AuthService) -> None:
    registered = service.register("alice", "a@x.com", "secret1")
    assert registered.user.username == "alice"

    signed_in = service.authenticate("a@x.com", "secret1")
    access = service.rotate_access_token(signed_in.refresh_token)
    assert service.signer.verify_access_token(access).email == "a@x.com"

    service.sign_out(signed_in.refresh_token, signed_in.user.id)
    _expect(ErrorKind.INVALID_REFRESH_TOKEN, service.rotate_access_token, signed_in.refresh_token)

    # The registration session is independent of the one just closed.
    assert service.rotate_access_token(registered.refresh_token)
