"""
Password and session tests.
"""

from datetime import timedelta

import pytest

from pdv.errors import NotFoundError, ValidationError
from pdv.models import SessionToken
from pdv.services import auth_service, session_service
from pdv.services.auth_service import PasswordValidationError


@pytest.mark.parametrize("password", ["short1", "abcdefghij", "1234567890"])
def test_weak_passwords_rejected(password):
    with pytest.raises(PasswordValidationError):
        auth_service.validate_password_strength(password)


def test_hash_and_verify(app):
    hashed = auth_service.hash_password("Senha1234")
    assert hashed != "Senha1234"
    assert auth_service.verify_password("Senha1234", hashed)
    assert not auth_service.verify_password("Senha12345", hashed)


def test_create_user_and_authenticate(db_session):
    user = auth_service.create_user("ana", "Senha1234", "trainee")

    assert auth_service.authenticate("ana", "Senha1234").id == user.id
    assert user.last_login_at is not None
    assert auth_service.authenticate("ana", "errada123") is None
    assert auth_service.authenticate("nobody", "Senha1234") is None

    with pytest.raises(ValidationError):
        auth_service.create_user("ana", "Senha1234", "trainee")
    with pytest.raises(ValidationError):
        auth_service.create_user("bia", "Senha1234", "manager")


def test_inactive_user_cannot_authenticate(db_session, seller_user):
    seller_user.is_active = False
    db_session.commit()
    assert auth_service.authenticate("vendedor", "Password123") is None


def test_session_round_trip(db_session, seller_user):
    session, token = session_service.create_session(seller_user.id, user_agent="pytest")

    assert session.token_hash == session_service.hash_token(token)
    context = session_service.validate_session(token)
    assert context.user.id == seller_user.id
    assert context.operator == session_service.OperatorContext(seller_user.id, "vendedor", "seller")

    assert session_service.revoke_session(token) is True
    assert session_service.validate_session(token) is None
    assert session_service.revoke_session(token) is False


def test_idle_session_is_revoked(db_session, seller_user):
    session, token = session_service.create_session(seller_user.id)
    session.last_used_at = session.last_used_at - timedelta(hours=3)
    db_session.commit()

    assert session_service.validate_session(token) is None
    db_session.expire_all()
    assert db_session.get(SessionToken, session.id).revoked_reason == "Idle timeout"


def test_expired_session_is_rejected(db_session, seller_user):
    session, token = session_service.create_session(seller_user.id)
    session.expires_at = session.expires_at - timedelta(days=2)
    db_session.commit()

    assert session_service.validate_session(token) is None


def test_deactivated_user_loses_session(db_session, seller_user):
    _, token = session_service.create_session(seller_user.id)
    seller_user.is_active = False
    db_session.commit()

    assert session_service.validate_session(token) is None


def test_session_for_unknown_user(db_session):
    with pytest.raises(NotFoundError):
        session_service.create_session(9999)
