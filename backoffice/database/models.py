"""
Imports every model module so Base.metadata knows all tables
(used by create_all in development, the test suite and alembic).
"""
from backoffice.database.database import Base

import backoffice.modules.outlets.models
import backoffice.modules.auth.models
import backoffice.modules.procurement.models
import backoffice.modules.inventory.models
import backoffice.modules.ledger.models
import backoffice.modules.transfers.models
import backoffice.modules.security.models
import backoffice.modules.notifications.models
import backoffice.modules.creditors.models

metadata = Base.metadata
