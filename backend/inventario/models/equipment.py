from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import relationship

from inventario.database.base import Base


class Equipment(Base):
    __tablename__ = "equipments"
    __table_args__ = (
        UniqueConstraint("serial", name="uq_equipments_serial"),
        Index("ix_equipments_status_approval", "status", "approval_status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    equipamento = Column(String(255), nullable=False, default="")
    garantia = Column(String(255), nullable=True)
    patrimonio = Column(String(255), nullable=True, index=True)
    serial = Column(String(255), nullable=False, index=True)
    usuario_atual = Column(String(255), nullable=True, index=True)
    usuario_anterior = Column(String(255), nullable=True)
    local = Column(String(255), nullable=True)
    setor = Column(String(255), nullable=True)
    data_entrega_usuario = Column(String(255), nullable=True)
    status = Column(String(255), nullable=True, index=True)
    data_devolucao = Column(String(255), nullable=True)
    tipo = Column(String(255), nullable=True)
    nota_compra = Column(String(255), nullable=True)
    nota_pl_km = Column(String(255), nullable=True)
    termo_responsabilidade = Column(String(255), nullable=True)
    foto = Column(Text, nullable=True)
    qr_code = Column(Text, nullable=True)
    brand = Column(String(255), nullable=True)
    model = Column(String(255), nullable=True)
    email_colaborador = Column(String(255), nullable=True)
    identificador = Column(String(255), nullable=True)
    nome_so = Column(String(255), nullable=True)
    memoria_fisica_total = Column(String(255), nullable=True)
    grupo_politicas = Column(String(255), nullable=True)
    pais = Column(String(255), nullable=True)
    cidade = Column(String(255), nullable=True)
    estado_provincia = Column(String(255), nullable=True)
    condicao_termo = Column(String(50), nullable=True)
    observacoes = Column(Text, nullable=True)

    approval_status = Column(String(50), nullable=False, default="approved")
    rejection_reason = Column(Text, nullable=True)
    created_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    history = relationship(
        "EquipmentHistory",
        back_populates="equipment",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class EquipmentHistory(Base):
    __tablename__ = "equipment_history"

    id = Column(Integer, primary_key=True, index=True)
    equipment_id = Column(
        Integer,
        ForeignKey("equipments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    changed_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    changed_by = Column(String(255), nullable=True)
    change_type = Column(String(255), nullable=False)
    from_value = Column(Text, nullable=True)
    to_value = Column(Text, nullable=True)

    equipment = relationship("Equipment", back_populates="history")
