"""
Creditor ledger service.

Operations are scoped to the caller's outlet. Writers lock the supplier
row and read the latest entry inside the same transaction, then append an
entry with the next `entry_no`; the unique (outlet, supplier, entry_no)
constraint turns a lost race into a retryable conflict instead of a broken
balance chain.
"""
import csv
import io
import re
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import List, Optional, Tuple
from uuid import UUID
import logging

from sqlalchemy import and_, func
from sqlalchemy.orm import Session

from backoffice.common.exceptions import NotFoundError, ValidationError
from backoffice.common.utils import utcnow, format_quantity
from backoffice.core.config import settings
from backoffice.database.database import transaction, run_with_retry
from backoffice.modules.auth.schemas import AuthContext
from backoffice.modules.auth.dependencies import outlet_of
from backoffice.modules.creditors.models import CreditorLedgerEntry, CreditorReferenceType
from backoffice.modules.creditors.schemas import (
    PurchaseCreate, PaymentCreate, LedgerOut, LedgerSupplier, LedgerEntryOut,
    SupplierBalance, BalanceSummaryOut
)
from backoffice.modules.notifications.models import NotificationPriority
from backoffice.modules.notifications.service import NotificationService
from backoffice.modules.procurement.models import Supplier
from backoffice.modules.security.models import PinAction, PinActionStatus
from backoffice.modules.security.service import PinService, get_security_settings

logger = logging.getLogger(__name__)

CSV_HEADER = ["Date", "Particulars", "Debit", "Credit", "Balance", "Payment Method", "Paid By", "Notes"]


def _money(value) -> str:
    return f"{settings.CURRENCY_SYMBOL}{format_quantity(value)}"


def _date_bounds(start_date: Optional[date], end_date: Optional[date]):
    start = datetime.combine(start_date, time.min, tzinfo=timezone.utc) if start_date else None
    # The end date is inclusive
    end = datetime.combine(end_date, time(23, 59, 59), tzinfo=timezone.utc) if end_date else None
    return start, end


class CreditorLedgerService:

    def __init__(self, db: Session):
        self.db = db

    # ===== HELPERS =====

    def _get_supplier(self, tenant_id: UUID, supplier_id: UUID, lock: bool = False) -> Supplier:
        query = self.db.query(Supplier).filter(
            Supplier.id == supplier_id,
            Supplier.tenant_id == tenant_id
        )
        if lock:
            query = query.with_for_update()
        supplier = query.first()
        if not supplier:
            raise NotFoundError("Supplier not found")
        return supplier

    def _latest_entry(self, outlet_id: UUID, supplier_id: UUID) -> Optional[CreditorLedgerEntry]:
        return self.db.query(CreditorLedgerEntry).filter(
            CreditorLedgerEntry.outlet_id == outlet_id,
            CreditorLedgerEntry.supplier_id == supplier_id
        ).order_by(CreditorLedgerEntry.entry_no.desc()).first()

    def current_balance(self, outlet_id: UUID, supplier_id: UUID) -> Decimal:
        latest = self._latest_entry(outlet_id, supplier_id)
        return Decimal(str(latest.balance)) if latest else Decimal("0")

    def _filtered_entries(self, outlet_id: UUID, supplier_id: UUID, start_date: Optional[date], end_date: Optional[date]):
        query = self.db.query(CreditorLedgerEntry).filter(
            CreditorLedgerEntry.outlet_id == outlet_id,
            CreditorLedgerEntry.supplier_id == supplier_id
        )
        start, end = _date_bounds(start_date, end_date)
        if start:
            query = query.filter(CreditorLedgerEntry.date >= start)
        if end:
            query = query.filter(CreditorLedgerEntry.date <= end)
        return query

    def _append_entry(self, auth: AuthContext, outlet_id: UUID, supplier_id: UUID, debit: Decimal, credit: Decimal, **fields) -> CreditorLedgerEntry:
        """Chain a new entry after the latest one. Caller holds the supplier lock."""
        latest = self._latest_entry(outlet_id, supplier_id)
        previous_balance = Decimal(str(latest.balance)) if latest else Decimal("0")

        entry = CreditorLedgerEntry(
            tenant_id=auth.tenant_id,
            outlet_id=outlet_id,
            supplier_id=supplier_id,
            entry_no=(latest.entry_no + 1) if latest else 1,
            date=utcnow(),
            debit=debit,
            credit=credit,
            balance=previous_balance + credit - debit,
            **fields
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    # ===== QUERIES =====

    def get_ledger(
        self,
        auth: AuthContext,
        supplier_id: UUID,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        limit: int = 50,
        offset: int = 0
    ) -> LedgerOut:
        outlet_id = outlet_of(auth)
        supplier = self._get_supplier(auth.tenant_id, supplier_id)

        query = self._filtered_entries(outlet_id, supplier_id, start_date, end_date)
        total = query.count()
        entries = query.order_by(
            CreditorLedgerEntry.date.desc(), CreditorLedgerEntry.entry_no.desc()
        ).offset(offset).limit(limit).all()

        return LedgerOut(
            supplier=LedgerSupplier.model_validate(supplier),
            entries=[LedgerEntryOut.model_validate(entry) for entry in entries],
            current_balance=self.current_balance(outlet_id, supplier_id),
            total=total,
            has_more=offset + len(entries) < total
        )

    def get_balance_summary(self, auth: AuthContext) -> BalanceSummaryOut:
        """Suppliers the outlet currently owes (or is owed by), largest balance first."""
        outlet_id = outlet_of(auth)

        latest = self.db.query(
            CreditorLedgerEntry.supplier_id.label("supplier_id"),
            func.max(CreditorLedgerEntry.entry_no).label("entry_no")
        ).filter(
            CreditorLedgerEntry.outlet_id == outlet_id
        ).group_by(CreditorLedgerEntry.supplier_id).subquery()

        rows = self.db.query(CreditorLedgerEntry, Supplier).join(
            latest,
            and_(
                CreditorLedgerEntry.supplier_id == latest.c.supplier_id,
                CreditorLedgerEntry.entry_no == latest.c.entry_no
            )
        ).join(
            Supplier, Supplier.id == CreditorLedgerEntry.supplier_id
        ).filter(
            CreditorLedgerEntry.outlet_id == outlet_id,
            Supplier.tenant_id == auth.tenant_id
        ).all()

        balances = [
            SupplierBalance(
                supplier_id=supplier.id,
                supplier_name=supplier.name,
                balance=entry.balance,
                last_activity=entry.date
            )
            for entry, supplier in rows
            if Decimal(str(entry.balance)) != 0
        ]
        balances.sort(key=lambda item: item.balance, reverse=True)

        return BalanceSummaryOut(
            suppliers=balances,
            total_owed=sum((item.balance for item in balances), Decimal("0")),
            supplier_count=len(balances)
        )

    def export_ledger(
        self,
        auth: AuthContext,
        supplier_id: UUID,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None
    ) -> Tuple[str, str]:
        """Render the ledger as CSV, oldest entry first. Returns (csv_text, filename)."""
        outlet_id = outlet_of(auth)
        supplier = self._get_supplier(auth.tenant_id, supplier_id)

        entries = self._filtered_entries(outlet_id, supplier_id, start_date, end_date).order_by(
            CreditorLedgerEntry.date.asc(), CreditorLedgerEntry.entry_no.asc()
        ).all()

        now = utcnow()
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow([f"Supplier Ledger: {supplier.name}"])
        writer.writerow([f"Generated: {now.isoformat()}"])
        writer.writerow([])
        writer.writerow(CSV_HEADER)
        for entry in entries:
            writer.writerow([
                entry.date.date().isoformat(),
                entry.particulars,
                f"{Decimal(str(entry.debit)):.2f}",
                f"{Decimal(str(entry.credit)):.2f}",
                f"{Decimal(str(entry.balance)):.2f}",
                entry.payment_method.value if entry.payment_method else "",
                entry.paid_by_name or "",
                entry.notes or "",
            ])

        safe_name = re.sub(r"\s+", "_", supplier.name)
        filename = f"ledger_{safe_name}_{now.date().isoformat()}.csv"
        return buffer.getvalue(), filename

    # ===== WRITES =====

    def record_purchase(self, auth: AuthContext, data: PurchaseCreate) -> CreditorLedgerEntry:
        """Credit the supplier: the outlet owes `amount` more."""
        outlet_id = outlet_of(auth)

        def write():
            with transaction(self.db):
                self._get_supplier(auth.tenant_id, data.supplier_id, lock=True)
                entry = self._append_entry(
                    auth,
                    outlet_id,
                    data.supplier_id,
                    debit=Decimal("0"),
                    credit=data.amount,
                    particulars=data.particulars,
                    reference_type=data.reference_type,
                    reference_id=data.reference_id,
                    notes=data.notes
                )
            return entry

        entry = run_with_retry(write)
        self.db.refresh(entry)
        logger.info(
            f"Purchase of {entry.credit} recorded for supplier {data.supplier_id} at outlet {outlet_id}; "
            f"balance {entry.balance}"
        )
        return entry

    def record_payment(self, auth: AuthContext, data: PaymentCreate) -> CreditorLedgerEntry:
        """
        Debit the supplier after verifying the payer's PIN.

        A payment can never take the balance below zero. Payments at or
        above LARGE_PAYMENT_ALERT_THRESHOLD notify the outlet's managers.
        """
        outlet_id = outlet_of(auth)
        supplier = self._get_supplier(auth.tenant_id, data.supplier_id)
        supplier_name = supplier.name

        PinService(self.db).verify(
            auth,
            data.pin,
            PinAction.SUPPLIER_PAYMENT,
            target_details={"supplier_id": str(data.supplier_id), "amount": str(data.amount)},
            log_success=False
        )

        notifications = []

        def write():
            notifications.clear()
            with transaction(self.db):
                self._get_supplier(auth.tenant_id, data.supplier_id, lock=True)
                current_balance = self.current_balance(outlet_id, data.supplier_id)
                if data.amount > current_balance:
                    raise ValidationError(
                        f"Payment amount ({_money(data.amount)}) exceeds outstanding balance ({_money(current_balance)})"
                    )

                entry = self._append_entry(
                    auth,
                    outlet_id,
                    data.supplier_id,
                    debit=data.amount,
                    credit=Decimal("0"),
                    particulars=f"Payment - {data.payment_method.value}",
                    reference_type=CreditorReferenceType.PAYMENT,
                    reference_id=data.reference_id,
                    payment_method=data.payment_method,
                    paid_by=auth.user_id,
                    paid_by_name=auth.user_name,
                    pin_verified=True,
                    notes=data.notes
                )
                new_balance = Decimal(str(entry.balance))

                PinService(self.db).log_action(
                    auth,
                    PinAction.SUPPLIER_PAYMENT,
                    PinActionStatus.SUCCESS,
                    target_id=str(entry.id),
                    target_details={
                        "supplier_id": str(data.supplier_id),
                        "supplier_name": supplier_name,
                        "amount": str(data.amount),
                        "method": data.payment_method.value,
                        "new_balance": str(new_balance),
                    }
                )

                notifications.extend(self._notify_large_payment(auth, outlet_id, supplier_name, data, entry, new_balance))
            return entry

        entry = run_with_retry(write)
        NotificationService.dispatch(notifications)

        self.db.refresh(entry)
        logger.info(
            f"Payment of {entry.debit} via {data.payment_method.value} to supplier {data.supplier_id} "
            f"by user {auth.user_id}; balance {entry.balance}"
        )
        return entry

    def _notify_large_payment(
        self,
        auth: AuthContext,
        outlet_id: UUID,
        supplier_name: str,
        data: PaymentCreate,
        entry: CreditorLedgerEntry,
        new_balance: Decimal
    ) -> List:
        if data.amount < settings.LARGE_PAYMENT_ALERT_THRESHOLD:
            return []

        security_settings = get_security_settings(self.db, outlet_id)
        if not security_settings or not security_settings.notify_on_withdrawal or not security_settings.manager_user_ids:
            return []

        priority = (
            NotificationPriority.HIGH
            if data.amount >= settings.HIGH_PRIORITY_PAYMENT_THRESHOLD
            else NotificationPriority.MEDIUM
        )
        return NotificationService(self.db).notify_managers(
            auth.tenant_id,
            outlet_id,
            security_settings.manager_user_ids,
            type="SUPPLIER_PAYMENT",
            title="Supplier Payment Made",
            message=(
                f"{auth.user_name} paid {_money(data.amount)} to {supplier_name} via "
                f"{data.payment_method.value}. New balance: {_money(new_balance)}"
            ),
            priority=priority,
            amount=data.amount,
            action_by=auth.user_id,
            action_by_name=auth.user_name,
            details={
                "supplier_id": str(data.supplier_id),
                "ledger_entry_id": str(entry.id),
                "payment_method": data.payment_method.value,
            }
        )
