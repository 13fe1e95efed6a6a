from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel


class PendingApprovalOut(BaseModel):
    id: int
    type: Literal["equipment", "license"]
    name: str
    created_by_id: Optional[int] = None
    created_at: Optional[datetime] = None
