from pydantic import BaseModel, Field, model_validator
from typing import List, Optional
from uuid import UUID
from datetime import datetime
from decimal import Decimal

from backoffice.modules.ledger.models import AccountType


class JournalLineIn(BaseModel):
    """One side of a posting. Name the account by id or by name, not both."""
    account_id: Optional[UUID] = None
    account_name: Optional[str] = None
    debit: Decimal = Field(Decimal("0"), ge=0)
    credit: Decimal = Field(Decimal("0"), ge=0)
    description: Optional[str] = None

    @model_validator(mode="after")
    def check_account_reference(self):
        if (self.account_id is None) == (self.account_name is None):
            raise ValueError("Exactly one of account_id or account_name is required")
        return self


class AccountOut(BaseModel):
    id: UUID
    outlet_id: UUID
    code: Optional[str] = None
    name: str
    type: AccountType
    balance: Decimal
    is_system: bool

    class Config:
        from_attributes = True


class JournalLineOut(BaseModel):
    id: UUID
    account_id: UUID
    account_name: Optional[str] = None
    debit: Decimal
    credit: Decimal
    description: Optional[str] = None

    class Config:
        from_attributes = True


class JournalEntryOut(BaseModel):
    id: UUID
    outlet_id: UUID
    date: datetime
    description: str
    reference_type: Optional[str] = None
    reference_id: Optional[UUID] = None
    lines: List[JournalLineOut] = []

    class Config:
        from_attributes = True


class AccountLedgerLine(BaseModel):
    journal_entry_id: UUID
    date: datetime
    description: str
    debit: Decimal
    credit: Decimal


class AccountLedgerOut(BaseModel):
    account: AccountOut
    lines: List[AccountLedgerLine]
