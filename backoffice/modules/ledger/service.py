"""
Posting service for the double-entry ledger.

post_entry never commits: it joins the caller's transaction so that a
goods receipt and its accounting entry are written, or rolled back,
together.
"""
from typing import Dict, List, Optional, Tuple
from uuid import UUID
from datetime import datetime
from decimal import Decimal
import logging

from sqlalchemy.orm import Session, selectinload

from backoffice.common.exceptions import NotFoundError, ValidationError
from backoffice.common.utils import utcnow
from backoffice.modules.ledger.models import (
    FinancialAccount, JournalEntry, JournalLine, AccountType, DEBIT_NORMAL_TYPES
)
from backoffice.modules.ledger.schemas import JournalLineIn, AccountLedgerLine

logger = logging.getLogger(__name__)

BALANCE_TOLERANCE = Decimal("0.01")

INVENTORY_ASSET = "Inventory Asset"
ACCOUNTS_PAYABLE = "Accounts Payable"

# (code, name, type) provisioned for every outlet
DEFAULT_ACCOUNTS: List[Tuple[str, str, AccountType]] = [
    ("1000", "Cash on Hand", AccountType.ASSET),
    ("1001", "Bank Account", AccountType.ASSET),
    ("1200", INVENTORY_ASSET, AccountType.ASSET),
    ("2000", ACCOUNTS_PAYABLE, AccountType.LIABILITY),
    ("4000", "Sales Revenue", AccountType.REVENUE),
    ("5000", "Cost of Goods Sold", AccountType.EXPENSE),
]
DEFAULT_ACCOUNT_NAMES = {name for _, name, _ in DEFAULT_ACCOUNTS}


class LedgerService:

    def __init__(self, db: Session):
        self.db = db

    def seed_default_accounts(self, tenant_id: UUID, outlet_id: UUID) -> List[FinancialAccount]:
        """Create any missing system accounts for an outlet. Safe to call repeatedly."""
        existing = {
            account.name
            for account in self.db.query(FinancialAccount).filter(FinancialAccount.outlet_id == outlet_id)
        }
        created = []
        for code, name, account_type in DEFAULT_ACCOUNTS:
            if name in existing:
                continue
            account = FinancialAccount(
                tenant_id=tenant_id,
                outlet_id=outlet_id,
                code=code,
                name=name,
                type=account_type,
                balance=Decimal("0"),
                is_system=True
            )
            self.db.add(account)
            created.append(account)
        if created:
            self.db.flush()
            logger.info(f"Provisioned {len(created)} default accounts for outlet {outlet_id}")
        return created

    def _resolve_account(self, tenant_id: UUID, outlet_id: UUID, line: JournalLineIn) -> FinancialAccount:
        query = self.db.query(FinancialAccount).filter(
            FinancialAccount.tenant_id == tenant_id,
            FinancialAccount.outlet_id == outlet_id
        )
        if line.account_id:
            query = query.filter(FinancialAccount.id == line.account_id)
        else:
            query = query.filter(FinancialAccount.name == line.account_name)
        account = query.with_for_update().populate_existing().first()
        if account:
            return account

        if line.account_name in DEFAULT_ACCOUNT_NAMES:
            self.seed_default_accounts(tenant_id, outlet_id)
            return query.with_for_update().populate_existing().one()

        raise NotFoundError(f"Account '{line.account_name or line.account_id}' not found")

    def post_entry(
        self,
        tenant_id: UUID,
        outlet_id: UUID,
        description: str,
        lines: List[JournalLineIn],
        date: Optional[datetime] = None,
        reference_type: Optional[str] = None,
        reference_id: Optional[UUID] = None,
        user_id: Optional[UUID] = None
    ) -> JournalEntry:
        """Write a balanced journal entry and move the account balances."""
        if not lines:
            raise ValidationError("A journal entry needs at least one line")

        total_debit = sum((line.debit for line in lines), Decimal("0"))
        total_credit = sum((line.credit for line in lines), Decimal("0"))
        if abs(total_debit - total_credit) > BALANCE_TOLERANCE:
            raise ValidationError(
                f"Unbalanced ledger entry: debits {total_debit} do not equal credits {total_credit}"
            )

        entry = JournalEntry(
            tenant_id=tenant_id,
            outlet_id=outlet_id,
            date=date or utcnow(),
            description=description,
            reference_type=reference_type,
            reference_id=reference_id,
            created_by=user_id
        )
        self.db.add(entry)

        accounts: Dict[UUID, FinancialAccount] = {}
        for line in lines:
            account = self._resolve_account(tenant_id, outlet_id, line)
            accounts[account.id] = account

            entry.lines.append(JournalLine(
                account_id=account.id,
                debit=line.debit,
                credit=line.credit,
                description=line.description
            ))

            if account.type in DEBIT_NORMAL_TYPES:
                change = line.debit - line.credit
            else:
                change = line.credit - line.debit
            account.balance = Decimal(str(account.balance or 0)) + change

        self.db.flush()
        logger.info(
            f"Posted journal entry {entry.id} '{description}' for outlet {outlet_id}: "
            f"{total_debit} across {len(accounts)} accounts"
        )
        return entry

    def get_accounts(self, tenant_id: UUID, outlet_id: UUID) -> List[FinancialAccount]:
        return self.db.query(FinancialAccount).filter(
            FinancialAccount.tenant_id == tenant_id,
            FinancialAccount.outlet_id == outlet_id
        ).order_by(FinancialAccount.code, FinancialAccount.name).all()

    def get_account_by_name(self, tenant_id: UUID, outlet_id: UUID, name: str) -> Optional[FinancialAccount]:
        return self.db.query(FinancialAccount).filter(
            FinancialAccount.tenant_id == tenant_id,
            FinancialAccount.outlet_id == outlet_id,
            FinancialAccount.name == name
        ).first()

    def get_journal(
        self,
        tenant_id: UUID,
        outlet_id: UUID,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[JournalEntry]:
        query = self.db.query(JournalEntry).options(
            selectinload(JournalEntry.lines).selectinload(JournalLine.account)
        ).filter(
            JournalEntry.tenant_id == tenant_id,
            JournalEntry.outlet_id == outlet_id
        )
        if start_date:
            query = query.filter(JournalEntry.date >= start_date)
        if end_date:
            query = query.filter(JournalEntry.date <= end_date)
        return query.order_by(JournalEntry.date.desc()).offset(offset).limit(limit).all()

    def get_account_ledger(self, tenant_id: UUID, outlet_id: UUID, account_id: UUID):
        account = self.db.query(FinancialAccount).filter(
            FinancialAccount.id == account_id,
            FinancialAccount.tenant_id == tenant_id,
            FinancialAccount.outlet_id == outlet_id
        ).first()
        if not account:
            raise NotFoundError("Account not found")

        rows = self.db.query(JournalLine, JournalEntry).join(
            JournalEntry, JournalLine.journal_entry_id == JournalEntry.id
        ).filter(JournalLine.account_id == account_id).order_by(JournalEntry.date.desc()).all()

        lines = [
            AccountLedgerLine(
                journal_entry_id=entry.id,
                date=entry.date,
                description=line.description or entry.description,
                debit=line.debit,
                credit=line.credit
            )
            for line, entry in rows
        ]
        return account, lines
