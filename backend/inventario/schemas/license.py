from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class LicenseBase(BaseModel):
    produto: str = Field(min_length=1, max_length=255)
    tipo_licenca: Optional[str] = None
    chave_serial: str = Field(min_length=1, max_length=255)
    data_expiracao: Optional[str] = None
    usuario: str = Field(min_length=1, max_length=255)
    cargo: Optional[str] = None
    setor: Optional[str] = None
    gestor: Optional[str] = None
    centro_custo: Optional[str] = None
    conta_razao: Optional[str] = None
    nome_computador: Optional[str] = None
    numero_chamado: Optional[str] = None
    observacoes: Optional[str] = None


class LicenseCreate(LicenseBase):
    pass


class LicenseUpdate(BaseModel):
    produto: Optional[str] = None
    tipo_licenca: Optional[str] = None
    chave_serial: Optional[str] = None
    data_expiracao: Optional[str] = None
    usuario: Optional[str] = None
    cargo: Optional[str] = None
    setor: Optional[str] = None
    gestor: Optional[str] = None
    centro_custo: Optional[str] = None
    conta_razao: Optional[str] = None
    nome_computador: Optional[str] = None
    numero_chamado: Optional[str] = None
    observacoes: Optional[str] = None


class LicenseOut(LicenseBase):
    id: int
    chave_serial: str = ""
    usuario: str = ""
    approval_status: str = "approved"
    created_by_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None

    class Config:
        from_attributes = True


class LicenseApprovalUpdate(BaseModel):
    approved: bool
    rejection_reason: Optional[str] = None


class LicenseTotalsUpdate(BaseModel):
    totals: dict[str, int] = Field(default_factory=dict)


class ProductRename(BaseModel):
    old_name: str = Field(min_length=1, max_length=255)
    new_name: str = Field(min_length=1, max_length=255)


class LicenseImportOut(BaseModel):
    success: bool
    message: str
    produto: str
    total_records: int = 0
    removed_count: int = 0


class OperationResultOut(BaseModel):
    success: bool
    message: str
