import pytest
from fastapi import HTTPException

from inventario.core.security import verify_password
from inventario.models.audit_log import AuditLog
from inventario.models.user import User
from inventario.routes.users import create_user, delete_user, list_users, update_user
from inventario.schemas.user import UserCreate, UserUpdate


def new_user(db, admin, **overrides):
    data = {
        "username": "bruno.lima",
        "name": "Bruno Lima",
        "email": "Bruno@Empresa.com",
        "password": "Senha@123",
        "permissions": ["equipments.view", "tasks.manage"],
    }
    data.update(overrides)
    return create_user(payload=UserCreate(**data), db=db, current_user=admin)


def test_create_user_normalizes_email_and_filters_permissions(db_session, admin_user):
    created = new_user(db_session, admin_user)

    assert created.email == "bruno@empresa.com"
    assert created.role == "usuario"
    assert created.permissions == ["equipments.view"]
    assert [user.username for user in list_users(db=db_session, current_user=admin_user)] == sorted(
        [admin_user.username, "bruno.lima"]
    )
    audit = db_session.query(AuditLog).filter(AuditLog.target_type == "USER").one()
    assert audit.details == "Created new user: bruno.lima"


@pytest.mark.parametrize(
    ("overrides", "status_code"),
    [
        ({"email": "outro@empresa.com"}, 409),
        ({"username": "outro"}, 409),
        ({"username": "outro", "email": "outro@empresa.com", "role": "super"}, 422),
    ],
)
def test_create_user_rejects_taken_identity_or_unknown_role(db_session, admin_user, overrides, status_code):
    new_user(db_session, admin_user)

    with pytest.raises(HTTPException) as exc_info:
        new_user(db_session, admin_user, **overrides)

    assert exc_info.value.status_code == status_code


def test_update_user_keeps_password_when_blank(db_session, admin_user):
    created = new_user(db_session, admin_user)

    updated = update_user(
        user_id=created.id,
        payload=UserUpdate(name="Bruno L.", password="", permissions=["audit.view"]),
        db=db_session,
        current_user=admin_user,
    )

    assert updated.name == "Bruno L."
    assert updated.permissions == ["audit.view"]
    row = db_session.query(User).filter(User.id == created.id).one()
    assert verify_password("Senha@123", row.password)

    update_user(user_id=created.id, payload=UserUpdate(password="Nova@456"), db=db_session, current_user=admin_user)
    db_session.refresh(row)
    assert verify_password("Nova@456", row.password)


def test_admin_cannot_demote_or_delete_itself(db_session, admin_user):
    with pytest.raises(HTTPException) as exc_info:
        update_user(user_id=admin_user.id, payload=UserUpdate(role="usuario"), db=db_session, current_user=admin_user)
    assert exc_info.value.status_code == 400

    with pytest.raises(HTTPException) as exc_info:
        delete_user(user_id=admin_user.id, db=db_session, current_user=admin_user)
    assert exc_info.value.status_code == 400


def test_delete_user_is_audited(db_session, admin_user):
    created = new_user(db_session, admin_user)

    delete_user(user_id=created.id, db=db_session, current_user=admin_user)

    assert db_session.query(User).filter(User.id == created.id).count() == 0
    audit = db_session.query(AuditLog).filter(AuditLog.action_type == "DELETE").one()
    assert audit.details == "Deleted user: bruno.lima"
