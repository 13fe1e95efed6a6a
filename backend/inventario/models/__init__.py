from inventario.models.app_config import AppConfig  # noqa: F401
from inventario.models.audit_log import AuditLog  # noqa: F401
from inventario.models.equipment import Equipment, EquipmentHistory  # noqa: F401
from inventario.models.license import License  # noqa: F401
from inventario.models.user import User  # noqa: F401
