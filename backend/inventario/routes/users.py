from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from inventario.core.auth import get_current_admin
from inventario.core.permissions import ADMIN_ROLE, permissions_for_user, serialize_permissions
from inventario.core.security import get_password_hash
from inventario.database.deps import get_db
from inventario.models.user import User
from inventario.schemas.user import UserCreate, UserOut, UserUpdate
from inventario.services.equipment_history import log_action

router = APIRouter(prefix="/users", tags=["Users"])
USER_ROLES = (ADMIN_ROLE, "gestor", "usuario")
USER_NOT_FOUND = "Usuário não encontrado."


def _user_out(user: User) -> UserOut:
    return UserOut(
        id=user.id,
        username=user.username,
        name=user.name,
        email=user.email,
        role=user.role,
        permissions=permissions_for_user(user),
        last_login=user.last_login,
    )


def _check_role(role: str) -> None:
    if role not in USER_ROLES:
        raise HTTPException(status_code=422, detail=f"Perfil inválido. Use: {', '.join(USER_ROLES)}.")


def _check_identity_free(db: Session, username: Optional[str], email: Optional[str], user_id: Optional[int] = None):
    query = db.query(User)
    if user_id is not None:
        query = query.filter(User.id != user_id)
    if username and query.filter(User.username == username).first():
        raise HTTPException(status_code=409, detail="Nome de usuário já cadastrado.")
    if email and query.filter(User.email == email).first():
        raise HTTPException(status_code=409, detail="E-mail já cadastrado.")


def _get_user_or_404(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail=USER_NOT_FOUND)
    return user


@router.get("/", response_model=list[UserOut])
def list_users(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_admin),
):
    return [_user_out(row) for row in db.query(User).order_by(User.username.asc()).all()]


@router.post("/", response_model=UserOut, status_code=status.HTTP_201_CREATED)
def create_user(
    payload: UserCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_admin),
):
    username = payload.username.strip()
    email = payload.email.strip().lower()
    _check_role(payload.role)
    _check_identity_free(db, username, email)

    user = User(
        username=username,
        name=payload.name.strip() or username,
        email=email,
        password=get_password_hash(payload.password),
        role=payload.role,
        permissions=serialize_permissions(payload.permissions),
    )
    db.add(user)
    db.flush()
    log_action(db, current_user.username, "CREATE", "USER", user.id, f"Created new user: {username}")
    db.commit()
    db.refresh(user)
    return _user_out(user)


@router.put("/{user_id}", response_model=UserOut)
def update_user(
    user_id: int,
    payload: UserUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_admin),
):
    """Atualiza cadastro e acesso; senha em branco mantem a atual."""
    user = _get_user_or_404(db, user_id)
    data = payload.model_dump(exclude_unset=True)

    if data.get("role") is not None:
        _check_role(data["role"])
        if user.id == current_user.id and data["role"] != ADMIN_ROLE:
            raise HTTPException(status_code=400, detail="Não é possível remover o próprio perfil de administrador.")
    if data.get("username"):
        data["username"] = data["username"].strip()
    if data.get("email"):
        data["email"] = data["email"].strip().lower()
    _check_identity_free(db, data.get("username"), data.get("email"), user_id=user.id)

    password = data.pop("password", None)
    if password:
        user.password = get_password_hash(password)
    if data.get("permissions") is not None:
        user.permissions = serialize_permissions(data.pop("permissions"))
    for name in ("username", "name", "email", "role"):
        if data.get(name):
            setattr(user, name, data[name])

    log_action(db, current_user.username, "UPDATE", "USER", user.id, f"Updated user: {user.username}")
    db.commit()
    db.refresh(user)
    return _user_out(user)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_admin),
):
    if current_user.id == user_id:
        raise HTTPException(status_code=400, detail="Não é possível excluir o próprio usuário.")
    user = _get_user_or_404(db, user_id)
    deleted_username = user.username
    db.delete(user)
    log_action(db, current_user.username, "DELETE", "USER", user_id, f"Deleted user: {deleted_username}")
    db.commit()
    return None
