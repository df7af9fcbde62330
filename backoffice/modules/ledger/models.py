"""
Double-entry accounting: chart of accounts per outlet and journal entries.
"""
from backoffice.database.database import Base
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Numeric, Enum, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship
from uuid import uuid4
from backoffice.common.mixins import TenantMixin, TimestampMixin
from backoffice.common.utils import utcnow
import enum


class AccountType(str, enum.Enum):
    ASSET = "ASSET"
    LIABILITY = "LIABILITY"
    EQUITY = "EQUITY"
    REVENUE = "REVENUE"
    EXPENSE = "EXPENSE"


# Accounts whose balance grows with debits
DEBIT_NORMAL_TYPES = {AccountType.ASSET, AccountType.EXPENSE}


class FinancialAccount(Base, TenantMixin, TimestampMixin):
    __tablename__ = "financial_accounts"

    id = Column(Uuid, primary_key=True, default=uuid4)
    outlet_id = Column(Uuid, ForeignKey("outlets.id"), nullable=False, index=True)
    code = Column(String(20), nullable=True)
    name = Column(String(100), nullable=False)
    type = Column(Enum(AccountType), nullable=False)
    balance = Column(Numeric(15, 2), nullable=False, default=0)
    is_system = Column(Boolean, default=False)

    __table_args__ = (
        UniqueConstraint("outlet_id", "name", name="uq_account_outlet_name"),
    )


class JournalEntry(Base, TenantMixin, TimestampMixin):
    __tablename__ = "journal_entries"

    id = Column(Uuid, primary_key=True, default=uuid4)
    outlet_id = Column(Uuid, ForeignKey("outlets.id"), nullable=False, index=True)
    date = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    description = Column(Text, nullable=False)
    reference_type = Column(String(30), nullable=True)
    reference_id = Column(Uuid, nullable=True, index=True)
    created_by = Column(Uuid, ForeignKey("users.id"), nullable=True)

    lines = relationship("JournalLine", back_populates="journal_entry", cascade="all, delete-orphan")


class JournalLine(Base):
    __tablename__ = "journal_lines"

    id = Column(Uuid, primary_key=True, default=uuid4)
    journal_entry_id = Column(Uuid, ForeignKey("journal_entries.id"), nullable=False, index=True)
    account_id = Column(Uuid, ForeignKey("financial_accounts.id"), nullable=False, index=True)
    debit = Column(Numeric(15, 2), nullable=False, default=0)
    credit = Column(Numeric(15, 2), nullable=False, default=0)
    description = Column(String(255), nullable=True)

    journal_entry = relationship("JournalEntry", back_populates="lines")
    account = relationship("FinancialAccount")

    @property
    def account_name(self):
        return self.account.name if self.account else None
