import json
from typing import Iterable

from inventario.models.user import User

PERMISSION_DEFINITIONS = [
    {"code": "equipments.view", "label": "Consultar equipamentos"},
    {"code": "equipments.manage", "label": "Cadastrar, editar e aprovar equipamentos"},
    {"code": "equipments.import", "label": "Importar planilha base e relatorio Absolute"},
    {"code": "licenses.view", "label": "Consultar licencas"},
    {"code": "licenses.manage", "label": "Gerenciar licencas"},
    {"code": "audit.view", "label": "Log de auditoria"},
]
ALLOWED_PERMISSIONS = {item["code"] for item in PERMISSION_DEFINITIONS}
ADMIN_ROLE = "admin"


def parse_permissions(raw_permissions: object) -> list[str]:
    if raw_permissions is None:
        return []

    if isinstance(raw_permissions, list):
        source = raw_permissions
    elif isinstance(raw_permissions, str):
        text = raw_permissions.strip()
        if not text:
            return []
        try:
            decoded = json.loads(text)
        except json.JSONDecodeError:
            return []
        if not isinstance(decoded, list):
            return []
        source = decoded
    else:
        return []

    granted = {str(item or "").strip() for item in source}
    return sorted(granted & ALLOWED_PERMISSIONS)


def serialize_permissions(permissions: Iterable[str] | None) -> str:
    return json.dumps(parse_permissions(list(permissions or [])), ensure_ascii=False)


def is_admin(user: User | None) -> bool:
    return bool(user) and str(getattr(user, "role", "")).strip() == ADMIN_ROLE


def permissions_for_user(user: User | None) -> list[str]:
    if not user:
        return []
    if is_admin(user):
        return sorted(ALLOWED_PERMISSIONS)
    return parse_permissions(getattr(user, "permissions", "[]"))


def has_permission(user: User | None, permission: str) -> bool:
    required_permission = str(permission or "").strip()
    if not required_permission:
        return False
    return required_permission in permissions_for_user(user)
