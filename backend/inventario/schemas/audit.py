from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class AuditLogOut(BaseModel):
    id: int
    created_at: Optional[datetime] = None
    username: Optional[str] = None
    action_type: str
    target_type: str
    target_id: Optional[str] = None
    details: Optional[str] = None

    class Config:
        from_attributes = True
