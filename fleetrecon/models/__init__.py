"""SQLAlchemy models for the fleet import reconciler."""

from fleetrecon.models.customer import Customer
from fleetrecon.models.vehicle import Vehicle
from fleetrecon.models.agreement import Agreement
from fleetrecon.models.financial_record import FinancialRecordEntry
from fleetrecon.models.balance_application import BalanceApplication
from fleetrecon.models.import_log import ImportLog

__all__ = [
    "Customer",
    "Vehicle",
    "Agreement",
    "FinancialRecordEntry",
    "BalanceApplication",
    "ImportLog",
]
