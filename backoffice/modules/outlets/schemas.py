from pydantic import BaseModel
from typing import Optional
from uuid import UUID


class OutletOut(BaseModel):
    id: UUID
    tenant_id: UUID
    name: str
    code: Optional[str] = None
    address: Optional[str] = None
    is_active: bool

    class Config:
        from_attributes = True
