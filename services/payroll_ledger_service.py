import logging
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

import models
from services.events import DomainEventBus, ExpenseDocumentUploaded
from utils.errors import ConfigurationError

logger = logging.getLogger("erp_drive.payroll_ledger")

CENTS = Decimal("0.01")

_UPSERT_INSERTS = {
    "postgresql": postgresql_insert,
    "sqlite": sqlite_insert,
}


def _money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENTS, rounding=ROUND_HALF_UP)


class PayrollLedgerService:
    """
    Keeps the monthly ``office_payrolls`` expense totals in step with uploaded
    expense receipts. Works on the publisher's session and never commits.

    The row for a period is written with a single INSERT ... ON CONFLICT DO
    UPDATE, so two first expenses of the same period arriving together both
    land on one row instead of tripping the unique constraint.
    """

    def __init__(self, db: Session):
        self.db = db

    def _insert(self):
        dialect = self.db.get_bind().dialect.name
        insert = _UPSERT_INSERTS.get(dialect)
        if insert is None:
            raise ConfigurationError(f"Payroll ledger upsert is not supported on {dialect}")
        return insert(models.OfficePayroll.__table__)

    def handle_expense_document_uploaded(self, event: ExpenseDocumentUploaded) -> models.OfficePayroll:
        amount = _money(event.amount)
        table = models.OfficePayroll.__table__

        stmt = self._insert().values(
            user_id=event.owner_id,
            year=event.year,
            month=event.month,
            other_expenses=amount,
            total_extras=amount,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.user_id, table.c.year, table.c.month],
            set_={
                "other_expenses": table.c.other_expenses + stmt.excluded.other_expenses,
                "total_extras": table.c.total_extras + stmt.excluded.total_extras,
            },
        )
        self.db.execute(stmt)

        payroll = (
            self.db.query(models.OfficePayroll)
            .filter_by(user_id=event.owner_id, year=event.year, month=event.month)
            .populate_existing()
            .one()
        )

        logger.info(
            "Expense added to payroll ledger",
            extra={
                "user_id": event.owner_id,
                "period": f"{event.year:04d}-{event.month:02d}",
                "amount": str(amount),
                "document_id": event.document_id,
            },
        )
        return payroll


def build_event_bus(db: Session) -> DomainEventBus:
    bus = DomainEventBus()
    bus.subscribe(ExpenseDocumentUploaded, PayrollLedgerService(db).handle_expense_document_uploaded)
    return bus
