"""
Seed script: populate a demo restaurant brand with two outlets.

What it creates:
- Organization (tenant) with outlets "Central Kitchen" and "Downtown".
- Users: brand admin, one manager and one staff member per outlet
  (staff PIN 1234, manager PIN 4321).
- Suppliers (4) with contact details.
- Products with the same SKUs at both outlets (so transfers match) and
  ingredients with purchase units, all with opening stock.
- Chart of accounts per outlet and security settings naming the outlet
  manager as alert recipient.
- A few creditor ledger purchases so balances are non-zero.

Run inside the API container so the 'postgres' host resolves:
    docker compose exec api python scripts/seed_demo_data.py --brand-name "Demo Bistro"

Prints a bearer token for every user. Development environments only.
"""

# Add project root to sys.path so `backoffice.*` imports work even if CWD changes
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import argparse
import random
from datetime import timedelta
from decimal import Decimal

from backoffice.database.database import SessionLocal, sync_engine, Base
import backoffice.database.models  # noqa: F401
from backoffice.modules.auth.models import User
from backoffice.modules.auth.schemas import UserRole
from backoffice.modules.auth.utils import hash_pin, create_access_token
from backoffice.modules.outlets.models import Organization, Outlet
from backoffice.modules.procurement.models import Supplier
from backoffice.modules.inventory.models import Product, Ingredient
from backoffice.modules.ledger.service import LedgerService
from backoffice.modules.security.models import UserPIN, SecuritySettings
from backoffice.modules.creditors.models import CreditorLedgerEntry, CreditorReferenceType
from backoffice.common.utils import utcnow


SUPPLIERS = [
    ("Fresh Farms", "Ravi", "+91 98450 11111"),
    ("Dairy Direct", "Meena", "+91 98450 22222"),
    ("Spice Route Traders", "Arjun", "+91 98450 33333"),
    ("City Beverages", "Kiran", "+91 98450 44444"),
]

# (name, sku, unit, cost, supplier index)
PRODUCTS = [
    ("Cola 300ml", "BEV-COLA-300", "btl", "25.00", 3),
    ("Mineral Water 1L", "BEV-WATER-1L", "btl", "15.00", 3),
    ("Paneer Block 1kg", "DAI-PANEER-1KG", "pcs", "380.00", 1),
    ("Butter 500g", "DAI-BUTTER-500", "pcs", "260.00", 1),
    ("Frozen Fries 2.5kg", "FRZ-FRIES-2500", "pack", "420.00", 0),
]

# (name, unit, purchase unit, cost per unit, supplier index)
INGREDIENTS = [
    ("Tomatoes", "kg", "kg", "32.00", 0),
    ("Onions", "kg", "kg", "28.00", 0),
    ("Milk", "l", "crate", "54.00", 1),
    ("Garam Masala", "g", "pack", "0.90", 2),
    ("Basmati Rice", "kg", "bag", "110.00", 2),
]


def create_organization(db, name: str):
    slug = name.lower().replace(" ", "-")
    organization = db.query(Organization).filter(Organization.slug == slug).first()
    if organization:
        return organization
    organization = Organization(name=name, slug=slug, is_active=True)
    db.add(organization)
    db.commit()
    db.refresh(organization)
    return organization


def create_outlets(db, tenant_id):
    outlets = []
    for name, code in (("Central Kitchen", "CK"), ("Downtown", "DT")):
        outlet = db.query(Outlet).filter(Outlet.tenant_id == tenant_id, Outlet.name == name).first()
        if not outlet:
            outlet = Outlet(tenant_id=tenant_id, name=name, code=code, is_active=True)
            db.add(outlet)
        outlets.append(outlet)
    db.commit()
    return outlets


def create_user(db, tenant_id, outlet_id, email, name, role: UserRole, pin=None):
    user = db.query(User).filter(User.email == email).first()
    if not user:
        user = User(tenant_id=tenant_id, outlet_id=outlet_id, email=email, name=name, role=role.value, is_active=True)
        db.add(user)
        db.flush()
    if pin and not db.query(UserPIN).filter(UserPIN.user_id == user.id).first():
        db.add(UserPIN(tenant_id=tenant_id, user_id=user.id, pin_hash=hash_pin(pin), failed_attempts=0))
    db.commit()
    return user


def create_suppliers(db, tenant_id):
    suppliers = []
    for name, contact, phone in SUPPLIERS:
        supplier = db.query(Supplier).filter(Supplier.tenant_id == tenant_id, Supplier.name == name).first()
        if not supplier:
            supplier = Supplier(tenant_id=tenant_id, name=name, contact_name=contact, phone=phone)
            db.add(supplier)
        suppliers.append(supplier)
    db.commit()
    return suppliers


def create_stock(db, tenant_id, outlet, suppliers):
    for name, sku, unit, cost, supplier_idx in PRODUCTS:
        exists = db.query(Product).filter(Product.outlet_id == outlet.id, Product.sku == sku).first()
        if not exists:
            db.add(Product(
                tenant_id=tenant_id,
                outlet_id=outlet.id,
                supplier_id=suppliers[supplier_idx].id,
                name=name,
                sku=sku,
                unit=unit,
                cost_price=Decimal(cost),
                current_stock=Decimal(random.randint(10, 80))
            ))
    for name, unit, purchase_unit, cost, supplier_idx in INGREDIENTS:
        exists = db.query(Ingredient).filter(Ingredient.outlet_id == outlet.id, Ingredient.name == name).first()
        if not exists:
            db.add(Ingredient(
                tenant_id=tenant_id,
                outlet_id=outlet.id,
                supplier_id=suppliers[supplier_idx].id,
                name=name,
                unit=unit,
                purchase_unit=purchase_unit,
                cost_per_unit=Decimal(cost),
                current_stock=Decimal(random.randint(5, 40))
            ))
    db.commit()


def create_opening_creditor_balances(db, tenant_id, outlet, suppliers):
    for supplier in suppliers[:2]:
        has_entries = db.query(CreditorLedgerEntry).filter(
            CreditorLedgerEntry.outlet_id == outlet.id,
            CreditorLedgerEntry.supplier_id == supplier.id
        ).first()
        if has_entries:
            continue
        amount = Decimal(random.choice([2500, 6400, 12800]))
        db.add(CreditorLedgerEntry(
            tenant_id=tenant_id,
            outlet_id=outlet.id,
            supplier_id=supplier.id,
            entry_no=1,
            date=utcnow() - timedelta(days=7),
            particulars="Opening balance",
            reference_type=CreditorReferenceType.DIRECT_PURCHASE,
            debit=Decimal("0"),
            credit=amount,
            balance=amount
        ))
    db.commit()


def main():
    parser = argparse.ArgumentParser(description="Seed restaurant back office demo data")
    parser.add_argument("--brand-name", default="Demo Bistro")
    parser.add_argument("--email-domain", default="demobistro.test")
    parser.add_argument("--create-tables", action="store_true", help="Run create_all before seeding")
    args = parser.parse_args()

    if args.create_tables:
        Base.metadata.create_all(bind=sync_engine)

    db = SessionLocal()
    try:
        organization = create_organization(db, args.brand_name)
        outlets = create_outlets(db, organization.id)
        suppliers = create_suppliers(db, organization.id)

        users = [create_user(
            db, organization.id, outlets[0].id, f"admin@{args.email_domain}", "Brand Admin", UserRole.BRAND_ADMIN, pin="9999"
        )]
        for outlet in outlets:
            code = outlet.code.lower()
            manager = create_user(
                db, organization.id, outlet.id, f"manager.{code}@{args.email_domain}",
                f"{outlet.name} Manager", UserRole.OUTLET_MANAGER, pin="4321"
            )
            staff = create_user(
                db, organization.id, outlet.id, f"staff.{code}@{args.email_domain}",
                f"{outlet.name} Staff", UserRole.STAFF, pin="1234"
            )
            users.extend([manager, staff])

            print(f"Stocking {outlet.name}...")
            create_stock(db, organization.id, outlet, suppliers)

            LedgerService(db).seed_default_accounts(organization.id, outlet.id)
            if not db.query(SecuritySettings).filter(SecuritySettings.outlet_id == outlet.id).first():
                db.add(SecuritySettings(
                    tenant_id=organization.id,
                    outlet_id=outlet.id,
                    notify_on_withdrawal=True,
                    manager_user_ids=[str(manager.id)]
                ))
            db.commit()

            create_opening_creditor_balances(db, organization.id, outlet, suppliers)

        print("\nSeed completed.")
        print(f"Organization: {organization.name} ({organization.id})")
        for outlet in outlets:
            print(f"  Outlet {outlet.name}: {outlet.id}")
        print("Bearer tokens:")
        for user in users:
            token = create_access_token({"sub": str(user.id)}, expires_delta=timedelta(days=7))
            print(f"  {user.email} [{user.role}]: {token}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
