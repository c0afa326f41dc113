"""
Authentication, session and login-throttle tests.
"""
from datetime import timedelta

import pytest

from gasdepot.errors import ValidationError
from gasdepot.models import Customer, LoyaltyTransaction, SessionToken, ThrottleEntry
from gasdepot.models.customers import REASON_REFERRAL_BONUS
from gasdepot.services import auth_service, login_throttle_service, session_service
from gasdepot.services.auth_service import PasswordValidationError
from gasdepot.time_utils import utcnow


# =============================================================================
# PASSWORDS
# =============================================================================

@pytest.mark.parametrize("password", ["short1A", "alllowercase1", "ALLUPPERCASE1", "NoDigitsHere"])
def test_weak_passwords_rejected(password):
    with pytest.raises(PasswordValidationError):
        auth_service.validate_password_strength(password)


def test_hash_and_verify(app):
    with app.app_context():
        hashed = auth_service.hash_password("Password123")
        assert hashed != "Password123"
        assert auth_service.verify_password("Password123", hashed)
        assert not auth_service.verify_password("Password124", hashed)
        assert not auth_service.verify_password("Password123", "not-a-bcrypt-hash")


# =============================================================================
# ACCOUNTS
# =============================================================================

def test_create_customer_gets_profile(db_session, customer_user):
    profile = db_session.get(Customer, customer_user.id)

    assert profile is not None
    assert profile.loyalty_points == 0
    assert profile.referral_code.startswith("MAR")


def test_duplicate_username_rejected(db_session, customer_user):
    with pytest.raises(ValidationError):
        auth_service.create_user(username="maria", full_name="Other", password="Password123", role="cliente")


def test_invalid_role_rejected(db_session):
    with pytest.raises(ValidationError):
        auth_service.create_user(username="x1", full_name="X", password="Password123", role="admin")


def test_register_with_referral_awards_referrer(db_session, customer_user):
    code = db_session.get(Customer, customer_user.id).referral_code

    result = auth_service.register_customer(
        username="lucia",
        full_name="Lucia Torres",
        password="Password123",
        referral_code=code.lower(),
    )

    assert result["referral_bonus_awarded"] == 50
    assert result["customer"]["referred_by_user_id"] == customer_user.id
    assert db_session.get(Customer, customer_user.id).loyalty_points == 50
    bonus = db_session.query(LoyaltyTransaction).filter_by(reason=REASON_REFERRAL_BONUS).one()
    assert bonus.customer_user_id == customer_user.id


def test_register_with_unknown_referral_creates_nothing(db_session):
    with pytest.raises(ValidationError):
        auth_service.register_customer(
            username="lucia", full_name="Lucia Torres", password="Password123", referral_code="ZZZ000"
        )
    assert db_session.query(Customer).count() == 0


def test_authenticate(db_session, customer_user):
    assert auth_service.authenticate("maria", "Password123").id == customer_user.id
    assert auth_service.authenticate("maria", "wrong") is None
    assert auth_service.authenticate("nobody", "Password123") is None

    auth_service.set_user_active(customer_user.id, False)
    assert auth_service.authenticate("maria", "Password123") is None


# =============================================================================
# SESSIONS
# =============================================================================

def test_session_roundtrip(db_session, driver):
    session, token = session_service.create_session(driver.id, user_agent="pytest")

    assert session.token_hash != token
    context = session_service.validate_session(token)
    assert context.user.id == driver.id
    assert context.actor.role == "repartidor"

    assert session_service.revoke_session(token) is True
    assert session_service.validate_session(token) is None
    assert session_service.revoke_session(token) is False


def test_idle_session_is_revoked(db_session, driver):
    session, token = session_service.create_session(driver.id)
    session.last_used_at = utcnow() - timedelta(hours=3)
    db_session.commit()

    assert session_service.validate_session(token) is None
    assert db_session.get(SessionToken, session.id).revoked_at is not None


def test_deactivated_user_session_invalid(db_session, driver):
    _, token = session_service.create_session(driver.id)
    auth_service.set_user_active(driver.id, False)

    assert session_service.validate_session(token) is None


def test_revoke_all_user_sessions(db_session, driver):
    session_service.create_session(driver.id)
    session_service.create_session(driver.id)

    assert session_service.revoke_all_user_sessions(driver.id) == 2


# =============================================================================
# LOGIN THROTTLE
# =============================================================================

def test_lockout_after_max_failures(db_session):
    for _ in range(login_throttle_service.MAX_FAILED_ATTEMPTS - 1):
        login_throttle_service.record_failed_attempt("Maria")
    assert login_throttle_service.is_account_locked("maria") == (False, None)

    login_throttle_service.record_failed_attempt("maria")

    locked, seconds = login_throttle_service.is_account_locked("MARIA")
    assert locked is True
    assert 0 < seconds <= 15 * 60
    status = login_throttle_service.get_lockout_status("maria")
    assert status["failed_attempts"] == 5


def test_success_clears_counter(db_session):
    login_throttle_service.record_failed_attempt("maria")
    login_throttle_service.record_successful_login("maria")

    assert login_throttle_service.get_lockout_status("maria")["failed_attempts"] == 0


def test_expired_window_resets_and_purges(db_session):
    login_throttle_service.record_failed_attempt("maria")
    entry = db_session.query(ThrottleEntry).one()
    entry.window_expires_at = utcnow() - timedelta(seconds=1)
    db_session.commit()

    assert login_throttle_service.get_lockout_status("maria")["failed_attempts"] == 0
    assert login_throttle_service.purge_expired() == 1
