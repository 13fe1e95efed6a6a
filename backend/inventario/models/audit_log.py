from sqlalchemy import Column, DateTime, Integer, String, Text, func

from inventario.database.base import Base


class AuditLog(Base):
    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    username = Column(String(255), nullable=True)
    action_type = Column(String(60), nullable=False)
    target_type = Column(String(60), nullable=False)
    target_id = Column(String(60), nullable=True)
    details = Column(Text, nullable=True)
