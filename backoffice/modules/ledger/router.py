from fastapi import APIRouter, Depends, Query
from typing import List, Optional
from uuid import UUID
from datetime import datetime
from sqlalchemy.orm import Session

from backoffice.core.config import settings
from backoffice.database.database import get_db, transaction
from backoffice.modules.auth.dependencies import AuthDependencies, outlet_of
from backoffice.modules.auth.schemas import AuthContext, MANAGER_ROLES
from backoffice.modules.ledger.schemas import AccountOut, JournalEntryOut, AccountLedgerOut
from backoffice.modules.ledger.service import LedgerService

ledger_router = APIRouter(prefix="/ledger", tags=["Financial Ledger"])


@ledger_router.get("/accounts", response_model=List[AccountOut])
def get_accounts(
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGER_ROLES))
):
    """Chart of accounts with balances for the caller's outlet."""
    return LedgerService(db).get_accounts(auth_context.tenant_id, outlet_of(auth_context))


@ledger_router.post("/accounts/defaults", response_model=List[AccountOut])
def seed_default_accounts(
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGER_ROLES))
):
    """Provision the standard accounts for the caller's outlet."""
    service = LedgerService(db)
    outlet_id = outlet_of(auth_context)
    with transaction(db):
        service.seed_default_accounts(auth_context.tenant_id, outlet_id)
    return service.get_accounts(auth_context.tenant_id, outlet_id)


@ledger_router.get("/journal", response_model=List[JournalEntryOut])
def get_journal(
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGER_ROLES))
):
    return LedgerService(db).get_journal(
        auth_context.tenant_id, outlet_of(auth_context), start_date, end_date, limit, offset
    )


@ledger_router.get("/accounts/{account_id}/lines", response_model=AccountLedgerOut)
def get_account_ledger(
    account_id: UUID,
    db: Session = Depends(get_db),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGER_ROLES))
):
    """Every journal line booked against one account, newest first."""
    account, lines = LedgerService(db).get_account_ledger(
        auth_context.tenant_id, outlet_of(auth_context), account_id
    )
    return AccountLedgerOut(account=AccountOut.model_validate(account), lines=lines)
