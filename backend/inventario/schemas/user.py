from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

class UserCreate(BaseModel):
    username: str = Field(min_length=1, max_length=120)
    name: str = ""
    email: str
    password: str = Field(min_length=1)
    role: str = "usuario"
    permissions: list[str] = Field(default_factory=list)

class UserUpdate(BaseModel):
    username: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    role: Optional[str] = None
    permissions: Optional[list[str]] = None

class UserLogin(BaseModel):
    email: str
    password: str

class UserOut(BaseModel):
    id: int
    username: str
    name: str
    email: str
    role: str
    permissions: list[str] = Field(default_factory=list)
    last_login: Optional[datetime] = None

    class Config:
        from_attributes = True
