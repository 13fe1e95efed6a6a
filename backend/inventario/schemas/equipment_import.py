from typing import Optional

from pydantic import BaseModel, Field


class ImportResultOut(BaseModel):
    success: bool
    message: str
    total_records: int = 0
    inserted_count: int = 0
    updated_count: int = 0
    unchanged_count: int = 0
    history_count: int = 0


class ConsolidationPreviewOut(BaseModel):
    base_records: int = 0
    absolute_records: int = 0
    total: int
    items: list[dict[str, str]] = Field(default_factory=list)


class PlannedChangeOut(BaseModel):
    kind: str
    equipment_id: Optional[int] = None
    serial: str
    fields: list[str] = Field(default_factory=list)


class PeriodicUpdatePreviewOut(BaseModel):
    total_records: int
    inserted_count: int
    updated_count: int
    unchanged_count: int
    history_count: int
    changes: list[PlannedChangeOut] = Field(default_factory=list)


class ImportStatusOut(BaseModel):
    has_initial_consolidation_run: bool
    last_absolute_update_timestamp: Optional[str] = None
    next_tool: str
    update_required: bool = True
