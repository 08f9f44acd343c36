"""Unit tests for auth service.

Tests for:
- Password hashing and verification
- Login with the account password and with app passwords
- Session authentication, expiry and activity tracking
- Password confirmation window
- Logout
"""

from datetime import timedelta

import pytest

from apptokens.config import Settings
from apptokens.service.auth import SESSION_ID_LENGTH, AuthService
from apptokens.service.errors import AuthenticationError, ConflictError, ForbiddenError
from apptokens.service.secure_random import SecureRandom
from apptokens.storage.errors import InvalidTokenError
from apptokens.storage.memory import MemoryStore
from apptokens.storage.models import TokenKind, utcnow

PASSWORD = "TestPassword123!"


@pytest.fixture
def settings():
    """Create test settings."""
    return Settings(
        token_secret="Test-Secret-Key_for-Automation-Only-987654321!",
        session_ttl_minutes=60,
        password_confirmation_ttl_minutes=30,
    )


@pytest.fixture
def memory_store(tmp_path, settings):
    """Create memory store for testing."""
    return MemoryStore(fs_root=str(tmp_path), token_secret=settings.token_secret)


@pytest.fixture
def auth_service(memory_store, settings):
    """Create auth service for testing."""
    return AuthService(store=memory_store, settings=settings, random=SecureRandom())


@pytest.fixture
def test_user(auth_service):
    """Create a test user with password."""
    return auth_service.create_user("testuser", PASSWORD)


class TestPasswordHashing:
    def test_password_hashing_produces_hash(self, auth_service):
        pwd_hash, algo = auth_service._hash_password(PASSWORD)

        assert pwd_hash
        assert algo == "argon2id"
        assert pwd_hash != PASSWORD

    def test_same_password_produces_different_hashes(self, auth_service):
        hash1, _ = auth_service._hash_password(PASSWORD)
        hash2, _ = auth_service._hash_password(PASSWORD)

        # Salted
        assert hash1 != hash2

    def test_verify_password(self, auth_service, test_user):
        assert auth_service.verify_password(test_user.id, PASSWORD) is True
        assert auth_service.verify_password(test_user.id, "wrong") is False

    def test_verify_password_without_record(self, auth_service, memory_store):
        user = memory_store.create_user("nopassword")
        assert auth_service.verify_password(user.id, PASSWORD) is False


class TestCreateUser:
    def test_duplicate_login_name_is_conflict(self, auth_service, test_user):
        with pytest.raises(ConflictError) as exc:
            auth_service.create_user("testuser", PASSWORD)

        assert exc.value.status_code == 409
        assert exc.value.error_code == "conflict"


class TestLogin:
    def test_login_creates_session_token(self, auth_service, memory_store, test_user):
        user, session_id, token = auth_service.login("testuser", PASSWORD, user_agent="Firefox")

        assert user.id == test_user.id
        assert len(session_id) == SESSION_ID_LENGTH
        stored = memory_store.get_token(session_id)
        assert stored.id == token.id
        assert stored.kind == TokenKind.SESSION
        assert stored.name == "Firefox"
        assert stored.login_name == "testuser"
        assert stored.password_confirmed_at is not None

    def test_login_caches_password_for_session(self, auth_service, memory_store, test_user):
        _, session_id, token = auth_service.login("testuser", PASSWORD)

        assert memory_store.get_password(token, session_id) == PASSWORD

    def test_login_wrong_password(self, auth_service, test_user):
        with pytest.raises(AuthenticationError):
            auth_service.login("testuser", "wrong-password")

    def test_login_unknown_user(self, auth_service):
        with pytest.raises(AuthenticationError):
            auth_service.login("ghost", PASSWORD)

    def test_login_with_app_password_inherits_cached_password(
        self, auth_service, memory_store, test_user
    ):
        memory_store.generate_token(
            "AAAAA-BBBBB-CCCCC-DDDDD-EEEEE", test_user.id, "testuser", PASSWORD, "Phone",
            TokenKind.PERMANENT,
        )

        _, session_id, token = auth_service.login("testuser", "AAAAA-BBBBB-CCCCC-DDDDD-EEEEE")

        assert memory_store.get_password(token, session_id) == PASSWORD

    def test_login_with_passwordless_app_password(self, auth_service, memory_store, test_user):
        memory_store.generate_token(
            "FFFFF-GGGGG-HHHHH-JJJJJ-KKKKK", test_user.id, "testuser", None, "Phone",
            TokenKind.PERMANENT,
        )

        _, session_id, token = auth_service.login("testuser", "FFFFF-GGGGG-HHHHH-JJJJJ-KKKKK")

        assert memory_store.get_token(session_id).password is None

    def test_session_id_is_not_an_app_password(self, auth_service, memory_store, test_user):
        _, session_id, _ = auth_service.login("testuser", PASSWORD)

        with pytest.raises(AuthenticationError):
            auth_service.login("testuser", session_id)

    def test_foreign_app_password_rejected(self, auth_service, memory_store, test_user):
        other = auth_service.create_user("other", PASSWORD)
        memory_store.generate_token(
            "LLLLL-MMMMM-NNNNN-PPPPP-QQQQQ", other.id, "other", None, "Phone",
            TokenKind.PERMANENT,
        )

        with pytest.raises(AuthenticationError):
            auth_service.login("testuser", "LLLLL-MMMMM-NNNNN-PPPPP-QQQQQ")


class TestAuthenticate:
    def test_valid_session(self, auth_service, test_user):
        _, session_id, token = auth_service.login("testuser", PASSWORD)

        ctx = auth_service.authenticate(session_id)

        assert ctx.user_id == test_user.id
        assert ctx.session_id == session_id
        assert ctx.token_id == token.id

    def test_missing_or_unknown_session(self, auth_service):
        assert auth_service.authenticate(None) is None
        assert auth_service.authenticate("") is None
        assert auth_service.authenticate("unknown") is None

    def test_app_password_is_not_a_session(self, auth_service, memory_store, test_user):
        memory_store.generate_token(
            "app-token", test_user.id, "testuser", None, "Phone", TokenKind.PERMANENT
        )
        assert auth_service.authenticate("app-token") is None

    def test_expired_session_is_rejected_and_removed(self, auth_service, memory_store, test_user):
        _, session_id, token = auth_service.login("testuser", PASSWORD)
        memory_store.tokens[token.id].last_activity = utcnow() - timedelta(hours=2)

        assert auth_service.authenticate(session_id) is None
        with pytest.raises(InvalidTokenError):
            memory_store.get_token(session_id)

    def test_activity_is_touched(self, auth_service, memory_store, test_user):
        _, session_id, token = auth_service.login("testuser", PASSWORD)
        earlier = utcnow() - timedelta(minutes=10)
        memory_store.tokens[token.id].last_activity = earlier

        auth_service.authenticate(session_id)

        assert memory_store.get_token_by_id(token.id).last_activity > earlier


class TestPasswordConfirmation:
    def test_fresh_login_counts_as_confirmed(self, auth_service, test_user):
        _, session_id, _ = auth_service.login("testuser", PASSWORD)
        ctx = auth_service.authenticate(session_id)

        auth_service.require_recent_confirmation(ctx)

    def test_stale_confirmation_is_rejected(self, auth_service, memory_store, test_user):
        _, session_id, token = auth_service.login("testuser", PASSWORD)
        memory_store.tokens[token.id].password_confirmed_at = utcnow() - timedelta(hours=1)
        ctx = auth_service.authenticate(session_id)

        with pytest.raises(ForbiddenError):
            auth_service.require_recent_confirmation(ctx)

    def test_confirm_password_refreshes_window(self, auth_service, memory_store, test_user):
        _, session_id, token = auth_service.login("testuser", PASSWORD)
        memory_store.tokens[token.id].password_confirmed_at = utcnow() - timedelta(hours=1)
        ctx = auth_service.authenticate(session_id)

        auth_service.confirm_password(ctx, PASSWORD)

        auth_service.require_recent_confirmation(auth_service.authenticate(session_id))

    def test_confirm_password_wrong(self, auth_service, test_user):
        _, session_id, _ = auth_service.login("testuser", PASSWORD)
        ctx = auth_service.authenticate(session_id)

        with pytest.raises(ForbiddenError):
            auth_service.confirm_password(ctx, "nope")


class TestLogout:
    def test_logout_removes_session_token(self, auth_service, test_user):
        _, session_id, _ = auth_service.login("testuser", PASSWORD)

        auth_service.logout(session_id)

        assert auth_service.authenticate(session_id) is None

    def test_cleanup_expired_sessions(self, auth_service, memory_store, test_user):
        _, _, stale = auth_service.login("testuser", PASSWORD)
        _, fresh_id, _ = auth_service.login("testuser", PASSWORD)
        memory_store.tokens[stale.id].last_activity = utcnow() - timedelta(days=1)

        assert auth_service.cleanup_expired_sessions() == 1
        assert auth_service.authenticate(fresh_id) is not None
