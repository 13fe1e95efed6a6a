from sqlalchemy import Column, DateTime, Integer, String, Text, func

from inventario.database.base import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(120), unique=True, index=True, nullable=False)
    name = Column(String(180), nullable=False)
    email = Column(String(180), unique=True, index=True, nullable=False)
    password = Column(String(255), nullable=False)
    role = Column(String(40), nullable=False, default="usuario")
    permissions = Column(Text, nullable=True, default="[]")
    last_login = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
