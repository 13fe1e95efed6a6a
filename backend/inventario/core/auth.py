from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from inventario.core.config import ALGORITHM, SECRET_KEY
from inventario.core.permissions import PERMISSION_DEFINITIONS, has_permission, is_admin
from inventario.database.deps import get_db
from inventario.models.user import User

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")

PERMISSION_LABELS = {item["code"]: item["label"] for item in PERMISSION_DEFINITIONS}


def _forbidden(*permissions: str) -> HTTPException:
    labels = ", ".join(PERMISSION_LABELS.get(code, code) for code in permissions)
    detail = f"Acesso negado: requer {labels}." if labels else "Acesso negado"
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db)
) -> User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Credenciais inválidas",
        headers={"WWW-Authenticate": "Bearer"}
    )
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user_id = int(payload.get("sub"))
    except (JWTError, TypeError, ValueError):
        raise credentials_exception

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise credentials_exception
    # Token emitido antes de uma troca de nome de usuario deixa de valer.
    token_username = payload.get("username")
    if token_username is not None and token_username != user.username:
        raise credentials_exception
    return user


def get_current_admin(current_user: User = Depends(get_current_user)) -> User:
    if not is_admin(current_user):
        raise _forbidden()
    return current_user


def require_permission(permission: str):
    def dependency(current_user: User = Depends(get_current_user)) -> User:
        if not has_permission(current_user, permission):
            raise _forbidden(permission)
        return current_user

    return dependency


def require_any_permission(*permissions: str):
    clean_permissions = [str(item or "").strip() for item in permissions if str(item or "").strip()]

    def dependency(current_user: User = Depends(get_current_user)) -> User:
        if not clean_permissions:
            return current_user
        if any(has_permission(current_user, permission) for permission in clean_permissions):
            return current_user
        raise _forbidden(*clean_permissions)

    return dependency
