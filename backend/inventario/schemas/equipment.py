from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class EquipmentBase(BaseModel):
    equipamento: str = Field(default="", max_length=255)
    garantia: Optional[str] = None
    patrimonio: Optional[str] = None
    serial: str = Field(min_length=1, max_length=255)
    usuario_atual: Optional[str] = None
    usuario_anterior: Optional[str] = None
    local: Optional[str] = None
    setor: Optional[str] = None
    data_entrega_usuario: Optional[str] = None
    status: Optional[str] = None
    data_devolucao: Optional[str] = None
    tipo: Optional[str] = None
    nota_compra: Optional[str] = None
    nota_pl_km: Optional[str] = None
    termo_responsabilidade: Optional[str] = None
    foto: Optional[str] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    email_colaborador: Optional[str] = None
    identificador: Optional[str] = None
    nome_so: Optional[str] = None
    memoria_fisica_total: Optional[str] = None
    grupo_politicas: Optional[str] = None
    pais: Optional[str] = None
    cidade: Optional[str] = None
    estado_provincia: Optional[str] = None
    condicao_termo: Optional[str] = Field(default=None, max_length=50)
    observacoes: Optional[str] = None


class EquipmentCreate(EquipmentBase):
    pass


class EquipmentUpdate(BaseModel):
    equipamento: Optional[str] = None
    garantia: Optional[str] = None
    patrimonio: Optional[str] = None
    serial: Optional[str] = None
    usuario_atual: Optional[str] = None
    usuario_anterior: Optional[str] = None
    local: Optional[str] = None
    setor: Optional[str] = None
    data_entrega_usuario: Optional[str] = None
    status: Optional[str] = None
    data_devolucao: Optional[str] = None
    tipo: Optional[str] = None
    nota_compra: Optional[str] = None
    nota_pl_km: Optional[str] = None
    termo_responsabilidade: Optional[str] = None
    foto: Optional[str] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    email_colaborador: Optional[str] = None
    identificador: Optional[str] = None
    nome_so: Optional[str] = None
    memoria_fisica_total: Optional[str] = None
    grupo_politicas: Optional[str] = None
    pais: Optional[str] = None
    cidade: Optional[str] = None
    estado_provincia: Optional[str] = None
    condicao_termo: Optional[str] = None
    observacoes: Optional[str] = None


class EquipmentOut(EquipmentBase):
    id: int
    qr_code: Optional[str] = None
    approval_status: str = "approved"
    rejection_reason: Optional[str] = None
    created_by_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class EquipmentApprovalUpdate(BaseModel):
    approved: bool
    rejection_reason: Optional[str] = None


class EquipmentHistoryOut(BaseModel):
    id: int
    equipment_id: int
    changed_at: Optional[datetime] = None
    changed_by: Optional[str] = None
    change_type: str
    from_value: Optional[str] = None
    to_value: Optional[str] = None

    class Config:
        from_attributes = True


class EquipmentPageMetaOut(BaseModel):
    limit: int
    offset: int
    total: int
    has_next: bool
    has_previous: bool


class EquipmentListOut(BaseModel):
    items: list[EquipmentOut]
    page: EquipmentPageMetaOut
