"""
Tests for the financial ledger: balanced postings and default accounts.
"""

import pytest
from datetime import datetime
from decimal import Decimal

from backoffice.common.exceptions import ValidationError, NotFoundError
from backoffice.database.database import transaction
from backoffice.modules.ledger.models import FinancialAccount, JournalEntry, AccountType
from backoffice.modules.ledger.schemas import JournalLineIn
from backoffice.modules.ledger.service import LedgerService, INVENTORY_ASSET, ACCOUNTS_PAYABLE, DEFAULT_ACCOUNTS


class TestDefaultAccounts:

    def test_seed_is_idempotent(self, db_session, outlet_a):
        service = LedgerService(db_session)
        with transaction(db_session):
            created = service.seed_default_accounts(outlet_a.tenant_id, outlet_a.id)
        assert len(created) == len(DEFAULT_ACCOUNTS)

        with transaction(db_session):
            assert service.seed_default_accounts(outlet_a.tenant_id, outlet_a.id) == []

        accounts = service.get_accounts(outlet_a.tenant_id, outlet_a.id)
        assert {account.name for account in accounts} >= {INVENTORY_ASSET, ACCOUNTS_PAYABLE}
        assert all(account.is_system for account in accounts)

    def test_accounts_are_per_outlet(self, db_session, outlet_a, outlet_b):
        service = LedgerService(db_session)
        with transaction(db_session):
            service.seed_default_accounts(outlet_a.tenant_id, outlet_a.id)
        assert service.get_accounts(outlet_b.tenant_id, outlet_b.id) == []


class TestPostEntry:

    def _post(self, db_session, outlet, lines):
        with transaction(db_session):
            return LedgerService(db_session).post_entry(
                outlet.tenant_id, outlet.id, description="Goods received", lines=lines
            )

    def test_balanced_entry_moves_balances(self, db_session, outlet_a):
        """Test accounts are provisioned on first use and balances follow normal sides"""
        entry = self._post(db_session, outlet_a, [
            JournalLineIn(account_name=INVENTORY_ASSET, debit=Decimal("450.00")),
            JournalLineIn(account_name=ACCOUNTS_PAYABLE, credit=Decimal("450.00")),
        ])

        db_session.expire_all()
        service = LedgerService(db_session)
        inventory = service.get_account_by_name(outlet_a.tenant_id, outlet_a.id, INVENTORY_ASSET)
        payable = service.get_account_by_name(outlet_a.tenant_id, outlet_a.id, ACCOUNTS_PAYABLE)

        assert inventory.type == AccountType.ASSET
        assert inventory.balance == Decimal("450.00")
        assert payable.type == AccountType.LIABILITY
        assert payable.balance == Decimal("450.00")

        stored = db_session.get(JournalEntry, entry.id)
        assert len(stored.lines) == 2
        assert sum(line.debit for line in stored.lines) == sum(line.credit for line in stored.lines)

    def test_unbalanced_entry_rejected(self, db_session, outlet_a):
        with pytest.raises(ValidationError) as exc_info:
            self._post(db_session, outlet_a, [
                JournalLineIn(account_name=INVENTORY_ASSET, debit=Decimal("100")),
                JournalLineIn(account_name=ACCOUNTS_PAYABLE, credit=Decimal("90")),
            ])

        assert "Unbalanced" in exc_info.value.detail
        assert db_session.query(JournalEntry).count() == 0

    def test_rounding_tolerance(self, db_session, outlet_a):
        """Test a difference of one cent is accepted"""
        self._post(db_session, outlet_a, [
            JournalLineIn(account_name=INVENTORY_ASSET, debit=Decimal("100.01")),
            JournalLineIn(account_name=ACCOUNTS_PAYABLE, credit=Decimal("100.00")),
        ])
        assert db_session.query(JournalEntry).count() == 1

    def test_unknown_custom_account(self, db_session, outlet_a):
        with pytest.raises(NotFoundError):
            self._post(db_session, outlet_a, [
                JournalLineIn(account_name="Petty Cash Drawer 7", debit=Decimal("10")),
                JournalLineIn(account_name=ACCOUNTS_PAYABLE, credit=Decimal("10")),
            ])

    def test_line_needs_one_account_reference(self):
        with pytest.raises(ValueError):
            JournalLineIn(debit=Decimal("10"))


class TestLedgerEndpoints:

    def test_accounts_require_manager(self, client, headers_for, staff_a):
        assert client.get("/ledger/accounts", headers=headers_for(staff_a)).status_code == 403

    def test_seed_and_list_accounts(self, client, headers_for, manager_a):
        response = client.post("/ledger/accounts/defaults", headers=headers_for(manager_a))
        assert response.status_code == 200
        names = [account["name"] for account in response.json()]
        assert INVENTORY_ASSET in names
        assert ACCOUNTS_PAYABLE in names

        assert len(client.get("/ledger/accounts", headers=headers_for(manager_a)).json()) == len(DEFAULT_ACCOUNTS)

    def test_account_lines(self, client, db_session, headers_for, manager_a, outlet_a):
        with transaction(db_session):
            LedgerService(db_session).post_entry(
                outlet_a.tenant_id, outlet_a.id, description="Opening stock",
                lines=[
                    JournalLineIn(account_name=INVENTORY_ASSET, debit=Decimal("75")),
                    JournalLineIn(account_name=ACCOUNTS_PAYABLE, credit=Decimal("75")),
                ]
            )
        account = db_session.query(FinancialAccount).filter(FinancialAccount.name == INVENTORY_ASSET).one()

        response = client.get(f"/ledger/accounts/{account.id}/lines", headers=headers_for(manager_a))
        assert response.status_code == 200
        data = response.json()
        assert data["account"]["name"] == INVENTORY_ASSET
        assert len(data["lines"]) == 1
        assert data["lines"][0]["description"] == "Opening stock"

    def test_journal_date_filter(self, client, db_session, headers_for, manager_a, outlet_a):
        with transaction(db_session):
            service = LedgerService(db_session)
            for description, when in [("Old stock", datetime(2026, 1, 5)), ("New stock", datetime(2026, 3, 5))]:
                service.post_entry(
                    outlet_a.tenant_id, outlet_a.id, description=description, date=when,
                    lines=[
                        JournalLineIn(account_name=INVENTORY_ASSET, debit=Decimal("20")),
                        JournalLineIn(account_name=ACCOUNTS_PAYABLE, credit=Decimal("20")),
                    ]
                )

        everything = client.get("/ledger/journal", headers=headers_for(manager_a)).json()
        assert [entry["description"] for entry in everything] == ["New stock", "Old stock"]
        assert len(everything[0]["lines"]) == 2

        recent = client.get(
            "/ledger/journal", params={"start_date": "2026-02-01T00:00:00"}, headers=headers_for(manager_a)
        ).json()
        assert [entry["description"] for entry in recent] == ["New stock"]
