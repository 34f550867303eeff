from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from balance_cache import ALL_TIME, HISTORY, BalanceCache, month_scope
from balances import accumulate, monthly_history, month_key
from cashflow import assemble_calendar
from classifier import ClassificationMode
from codec import FieldCodec
from errors import NotFoundError, UpstreamFetchError, ValidationError
from models import (
    SAVINGS_GOAL_CATEGORY,
    RecurrencePattern,
    SavingsGoal,
    SavingsOperation,
    ScheduledTransaction,
    ScheduledTransactionExecution,
    Transaction,
    TransactionType,
)
from periods import Period, month_period, resolve_range
from recurrence import local_today, next_execution_date
from schemas import (
    GoalMovementIn,
    SavingsGoalIn,
    ScheduledTransactionIn,
    ScheduledTransactionUpdate,
    TransactionIn,
)
from store import (
    SAVINGS_GOALS,
    SCHEDULED_TRANSACTIONS,
    TRANSACTIONS,
    SavingsGoalRecord,
    ScheduledRecord,
    SqlStore,
    Store,
    TransactionMetadata,
    TransactionRecord,
    dump_metadata,
)


logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class BalanceService:
    """Read side: balances, history and the cash-flow calendar.

    Results are computed fully before they are written to the cache, and a
    failed Store read leaves the cache untouched.
    """

    def __init__(
        self,
        store: Store,
        cache: BalanceCache,
        today: Callable[[], date] = local_today,
    ) -> None:
        self.store = store
        self.cache = cache
        self.today = today

    def get_available_balance(self, user_id: str) -> dict[str, Decimal]:
        cached = self.cache.get(user_id, ALL_TIME)
        if cached is not None:
            return dict(cached)

        transactions = self.store.select_by_user(TRANSACTIONS, user_id)
        goals = self.store.select_by_user(SAVINGS_GOALS, user_id)

        available = accumulate(transactions, ClassificationMode.available_balance)
        allocated = sum((goal.current_amount for goal in goals), ZERO)
        result = {
            "balance": available,
            "totalBalance": available + allocated,
            "allocatedSavings": allocated,
        }
        self.cache.set(user_id, ALL_TIME, result)
        return dict(result)

    def get_monthly_balance(self, user_id: str, month, year) -> dict[str, Decimal]:
        period = month_period(month, year)
        scope = month_scope(period.start.year, period.start.month)
        cached = self.cache.get(user_id, scope)
        if cached is not None:
            return dict(cached)

        transactions = self.store.select_by_user(
            TRANSACTIONS, user_id, date_from=period.start, date_to=period.end
        )
        result = {"balance": accumulate(transactions, ClassificationMode.historical)}
        self.cache.set(user_id, scope, result)
        return dict(result)

    def get_balance_history(self, user_id: str) -> list[dict[str, object]]:
        cached = self.cache.get(user_id, HISTORY)
        if cached is not None:
            return [dict(point) for point in cached]

        transactions = self.store.select_by_user(TRANSACTIONS, user_id)
        history = monthly_history(transactions, ClassificationMode.historical)
        self.cache.set(user_id, HISTORY, history)
        return [dict(point) for point in history]

    def get_months(self, user_id: str) -> list[str]:
        transactions = self.store.select_by_user(TRANSACTIONS, user_id)
        months: list[str] = []
        for txn in sorted(transactions, key=lambda t: t.date):
            key = month_key(txn.date)
            if not months or months[-1] != key:
                months.append(key)
        return months

    def get_savings_overview(self, user_id: str) -> dict[str, object]:
        goals: list[SavingsGoalRecord] = self.store.select_by_user(
            SAVINGS_GOALS, user_id
        )
        if not goals:
            return {
                "totalAllocated": ZERO,
                "totalTargets": ZERO,
                "goals": [],
                "progressPercentage": 0.0,
                "totalGoals": 0,
            }

        def progress(current: Decimal, target: Decimal) -> float:
            if target <= 0:
                return 0.0
            return min(float(current / target * 100), 100.0)

        total_allocated = sum((g.current_amount for g in goals), ZERO)
        total_targets = sum((g.target_amount for g in goals), ZERO)
        return {
            "totalAllocated": total_allocated,
            "totalTargets": total_targets,
            "goals": [
                {
                    "id": g.id,
                    "goal_name": g.goal_name,
                    "current_amount": g.current_amount,
                    "target_amount": g.target_amount,
                    "target_date": g.target_date.isoformat() if g.target_date else None,
                    "progress": progress(g.current_amount, g.target_amount),
                }
                for g in goals[:3]
            ],
            "progressPercentage": progress(total_allocated, total_targets),
            "totalGoals": len(goals),
        }

    def get_calendar(self, user_id: str, start, end) -> dict[str, object]:
        period = resolve_range(start, end)
        transactions = self.store.select_by_user(
            TRANSACTIONS, user_id, date_to=period.end
        )
        scheduled = self.store.select_by_user(SCHEDULED_TRANSACTIONS, user_id)
        calendar = assemble_calendar(
            transactions,
            scheduled,
            period.start,
            period.end,
            today=self.today(),
            mode=ClassificationMode.historical,
        )
        return calendar.as_dict()

    def invalidate_user(self, user_id: str) -> None:
        self.cache.invalidate_user(user_id)


class _UserScopedService:
    def __init__(
        self,
        session: Session,
        cache: BalanceCache,
        user_id: str,
        codec: Optional[FieldCodec] = None,
    ) -> None:
        self.session = session
        self.cache = cache
        self.user_id = user_id
        self.codec = codec or FieldCodec()
        self.store = SqlStore(session, self.codec)

    def _commit(self) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise


class TransactionService(_UserScopedService):
    def list(self, period: Optional[Period] = None) -> list[TransactionRecord]:
        if period is None:
            return self.store.select_by_user(TRANSACTIONS, self.user_id)
        return self.store.select_by_user(
            TRANSACTIONS, self.user_id, date_from=period.start, date_to=period.end
        )

    def _get_row(self, transaction_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn or txn.user_id != self.user_id:
            raise NotFoundError("Transaction not found")
        return txn

    def get(self, transaction_id: int) -> TransactionRecord:
        return self.store.to_record(TRANSACTIONS, self._get_row(transaction_id))

    @staticmethod
    def _check_amount(data: TransactionIn) -> None:
        if data.typeId in (TransactionType.expense, TransactionType.income):
            if data.amount <= 0:
                raise ValidationError(
                    "Income and expense amounts must be positive", fields=["amount"]
                )

    @staticmethod
    def _metadata(data: TransactionIn) -> Optional[str]:
        if data.metadata is None:
            return None
        return dump_metadata(TransactionMetadata(**data.metadata.model_dump()))

    def create(self, data: TransactionIn) -> TransactionRecord:
        self._check_amount(data)
        txn = Transaction(
            **self.codec.encode_row(
                TRANSACTIONS,
                {
                    "user_id": self.user_id,
                    "description": data.description,
                    "amount": data.amount,
                    "type_id": int(data.typeId),
                    "category": data.category,
                    "date": data.date,
                    "metadata_json": self._metadata(data),
                },
            )
        )
        self.session.add(txn)
        self._commit()
        self.cache.invalidate_user(self.user_id)
        logger.info(f"transaction_created: user={self.user_id} id={txn.id}")
        return self.store.to_record(TRANSACTIONS, txn)

    def update(self, transaction_id: int, data: TransactionIn) -> TransactionRecord:
        self._check_amount(data)
        txn = self._get_row(transaction_id)
        values = self.codec.encode_row(
            TRANSACTIONS,
            {
                "description": data.description,
                "amount": data.amount,
                "type_id": int(data.typeId),
                "category": data.category,
                "date": data.date,
                "metadata_json": self._metadata(data),
            },
        )
        for field, value in values.items():
            setattr(txn, field, value)
        self._commit()
        self.cache.invalidate_user(self.user_id)
        logger.info(f"transaction_updated: user={self.user_id} id={txn.id}")
        return self.store.to_record(TRANSACTIONS, txn)

    def delete(self, transaction_id: int) -> None:
        txn = self._get_row(transaction_id)
        self.session.delete(txn)
        self._commit()
        self.cache.invalidate_user(self.user_id)
        logger.info(f"transaction_deleted: user={self.user_id} id={transaction_id}")


class ScheduledTransactionService(_UserScopedService):
    def __init__(
        self,
        session: Session,
        cache: BalanceCache,
        user_id: str,
        codec: Optional[FieldCodec] = None,
        today: Callable[[], date] = local_today,
    ) -> None:
        super().__init__(session, cache, user_id, codec)
        self.today = today

    def _require_future(self, scheduled_date: date) -> None:
        if scheduled_date <= self.today():
            raise ValidationError(
                "Scheduled transactions must be for future dates only. "
                "Use a regular transaction for today or past dates.",
                fields=["scheduled_date"],
            )

    def _get_row(self, scheduled_id: int) -> ScheduledTransaction:
        row = self.session.get(ScheduledTransaction, scheduled_id)
        if not row or row.user_id != self.user_id:
            raise NotFoundError("Scheduled transaction not found")
        return row

    def get(self, scheduled_id: int) -> ScheduledRecord:
        return self.store.to_record(SCHEDULED_TRANSACTIONS, self._get_row(scheduled_id))

    def list(self) -> list[ScheduledRecord]:
        return self.store.select_by_user(SCHEDULED_TRANSACTIONS, self.user_id)

    def create(self, data: ScheduledTransactionIn) -> ScheduledRecord:
        self._require_future(data.scheduled_date)
        row = ScheduledTransaction(
            **self.codec.encode_row(
                SCHEDULED_TRANSACTIONS,
                {
                    "user_id": self.user_id,
                    "description": data.description,
                    "amount": data.amount,
                    "type_id": int(data.typeId),
                    "category": data.category,
                    "recurrence_pattern": data.recurrence_pattern,
                    "recurrence_interval": data.recurrence_interval,
                    "recurrence_end_date": data.recurrence_end_date,
                    "next_execution_date": data.scheduled_date,
                    "anchor_day": data.scheduled_date.day,
                    "is_active": True,
                },
            )
        )
        self.session.add(row)
        self._commit()
        logger.info(f"scheduled_created: user={self.user_id} id={row.id}")
        return self.store.to_record(SCHEDULED_TRANSACTIONS, row)

    def update(
        self, scheduled_id: int, data: ScheduledTransactionUpdate
    ) -> ScheduledRecord:
        row = self._get_row(scheduled_id)
        changes = data.model_dump(exclude_unset=True)
        # only the end date may be cleared with an explicit null
        changes = {
            key: value
            for key, value in changes.items()
            if value is not None or key == "recurrence_end_date"
        }
        scheduled_date = changes.pop("scheduled_date", None)
        if scheduled_date is not None:
            self._require_future(scheduled_date)
            changes["next_execution_date"] = scheduled_date
            changes["anchor_day"] = scheduled_date.day
        elif "recurrence_pattern" in changes:
            # month steps restart from the current next date
            changes["anchor_day"] = row.next_execution_date.day
        type_id = changes.pop("typeId", None)
        if type_id is not None:
            changes["type_id"] = int(type_id)

        end_date = changes.get("recurrence_end_date", row.recurrence_end_date)
        start_date = changes.get("next_execution_date", row.next_execution_date)
        if end_date is not None and end_date < start_date:
            raise ValidationError(
                "recurrence_end_date must not precede scheduled_date",
                fields=["recurrence_end_date"],
            )

        for field, value in self.codec.encode_row(SCHEDULED_TRANSACTIONS, changes).items():
            setattr(row, field, value)
        self._commit()
        logger.info(f"scheduled_updated: user={self.user_id} id={row.id}")
        return self.store.to_record(SCHEDULED_TRANSACTIONS, row)

    def deactivate(self, scheduled_id: int) -> ScheduledRecord:
        row = self._get_row(scheduled_id)
        row.is_active = False
        self._commit()
        return self.store.to_record(SCHEDULED_TRANSACTIONS, row)

    def delete(self, scheduled_id: int) -> None:
        row = self._get_row(scheduled_id)
        self.session.delete(row)
        self._commit()
        logger.info(f"scheduled_deleted: user={self.user_id} id={scheduled_id}")


class SavingsGoalService(_UserScopedService):
    def __init__(
        self,
        session: Session,
        cache: BalanceCache,
        user_id: str,
        codec: Optional[FieldCodec] = None,
        today: Callable[[], date] = local_today,
    ) -> None:
        super().__init__(session, cache, user_id, codec)
        self.today = today

    def list(self) -> list[SavingsGoalRecord]:
        return self.store.select_by_user(SAVINGS_GOALS, self.user_id)

    def _get_row(self, goal_id: int) -> SavingsGoal:
        goal = self.session.get(SavingsGoal, goal_id)
        if not goal or goal.user_id != self.user_id:
            raise NotFoundError("Savings goal not found")
        return goal

    def create(self, data: SavingsGoalIn) -> SavingsGoalRecord:
        goal = SavingsGoal(
            **self.codec.encode_row(
                SAVINGS_GOALS,
                {
                    "user_id": self.user_id,
                    "goal_name": data.goal_name,
                    "target_amount": data.target_amount,
                    "current_amount": data.current_amount,
                    "target_date": data.target_date,
                },
            )
        )
        self.session.add(goal)
        self._commit()
        self.cache.invalidate_user(self.user_id)
        return self.store.to_record(SAVINGS_GOALS, goal)

    def allocate(self, goal_id: int, data: GoalMovementIn) -> SavingsGoalRecord:
        goal = self._get_row(goal_id)
        goal.current_amount = goal.current_amount + data.amount
        self._record_movement(goal, data.amount, SavingsOperation.allocate, data.date)
        return self.store.to_record(SAVINGS_GOALS, goal)

    def withdraw(self, goal_id: int, data: GoalMovementIn) -> SavingsGoalRecord:
        goal = self._get_row(goal_id)
        if data.amount > goal.current_amount:
            raise ValidationError(
                "Cannot withdraw more than the current saved amount",
                fields=["amount"],
            )
        goal.current_amount = goal.current_amount - data.amount
        self._record_movement(goal, -data.amount, SavingsOperation.withdraw, data.date)
        return self.store.to_record(SAVINGS_GOALS, goal)

    def _record_movement(
        self,
        goal: SavingsGoal,
        amount: Decimal,
        operation: SavingsOperation,
        on: Optional[date],
    ) -> None:
        goal_name = self.codec.decode_field(goal.goal_name)
        verb = "Allocated to" if operation == SavingsOperation.allocate else "Withdrawn from"
        txn = Transaction(
            **self.codec.encode_row(
                TRANSACTIONS,
                {
                    "user_id": self.user_id,
                    "description": f"{verb} {goal_name}",
                    "amount": amount,
                    "type_id": int(TransactionType.savings),
                    "category": SAVINGS_GOAL_CATEGORY,
                    "date": on or self.today(),
                    "metadata_json": dump_metadata(
                        TransactionMetadata(operation=operation, goal_id=goal.id)
                    ),
                },
            )
        )
        self.session.add(txn)
        self._commit()
        self.cache.invalidate_user(self.user_id)
        logger.info(
            f"savings_{operation.value}: user={self.user_id} goal={goal.id} amount={amount}"
        )


class ScheduledExecutionService:
    """Posts due scheduled transactions as real transactions.

    One execution row per (definition, date) keeps posting idempotent when
    runs overlap or repeat.
    """

    max_catch_up = 366

    def __init__(
        self,
        session: Session,
        cache: BalanceCache,
        codec: Optional[FieldCodec] = None,
    ) -> None:
        self.session = session
        self.cache = cache
        self.codec = codec or FieldCodec()

    def execute_due(self, today: Optional[date] = None) -> dict[str, int]:
        today = today or local_today()
        stmt = (
            select(ScheduledTransaction)
            .where(
                ScheduledTransaction.is_active.is_(True),
                ScheduledTransaction.next_execution_date <= today,
            )
            .order_by(ScheduledTransaction.next_execution_date, ScheduledTransaction.id)
        )
        try:
            due = self.session.scalars(stmt).all()
        except SQLAlchemyError as exc:
            raise UpstreamFetchError("Failed to fetch due scheduled transactions") from exc

        counts = {"processed": 0, "skipped": 0, "errors": 0}
        for scheduled in due:
            try:
                posted, skipped = self._catch_up(scheduled, today)
                self.session.commit()
            except SQLAlchemyError:
                self.session.rollback()
                counts["errors"] += 1
                logger.exception(f"scheduled_execution_failed: id={scheduled.id}")
                continue
            counts["processed"] += posted
            counts["skipped"] += skipped
            if posted:
                self.cache.invalidate_user(scheduled.user_id)
        logger.info(
            "scheduled_execution_done: processed={processed} skipped={skipped} "
            "errors={errors}".format(**counts)
        )
        return counts

    def _catch_up(self, scheduled: ScheduledTransaction, today: date) -> tuple[int, int]:
        posted = skipped = 0
        iterations = 0
        while (
            scheduled.is_active
            and scheduled.next_execution_date <= today
            and iterations < self.max_catch_up
        ):
            occurrence_date = scheduled.next_execution_date
            if scheduled.recurrence_end_date and occurrence_date > scheduled.recurrence_end_date:
                scheduled.is_active = False
                break
            if self._post_occurrence(scheduled, occurrence_date):
                posted += 1
            else:
                skipped += 1
            scheduled.last_executed_date = occurrence_date
            self._advance(scheduled)
            iterations += 1
        return posted, skipped

    def _advance(self, scheduled: ScheduledTransaction) -> None:
        if scheduled.recurrence_pattern == RecurrencePattern.once:
            scheduled.is_active = False
            logger.info(f"scheduled_deactivated: id={scheduled.id} reason=once")
            return
        following = next_execution_date(
            scheduled.next_execution_date,
            scheduled.recurrence_pattern,
            scheduled.recurrence_interval,
            anchor_day=scheduled.anchor_day,
        )
        if scheduled.recurrence_end_date and following > scheduled.recurrence_end_date:
            scheduled.is_active = False
            logger.info(f"scheduled_deactivated: id={scheduled.id} reason=end_date")
            return
        scheduled.next_execution_date = following
        if scheduled.recurrence_pattern in (RecurrencePattern.daily, RecurrencePattern.weekly):
            scheduled.anchor_day = following.day

    def _post_occurrence(
        self, scheduled: ScheduledTransaction, occurrence_date: date
    ) -> bool:
        exists_stmt = (
            select(ScheduledTransactionExecution.id)
            .where(
                ScheduledTransactionExecution.scheduled_transaction_id == scheduled.id,
                ScheduledTransactionExecution.execution_date == occurrence_date,
            )
            .limit(1)
        )
        if self.session.execute(exists_stmt).scalar_one_or_none():
            logger.warning(
                f"scheduled_duplicate_skipped: id={scheduled.id} date={occurrence_date}"
            )
            return False

        txn = Transaction(
            user_id=scheduled.user_id,
            # already encoded in storage form
            description=scheduled.description,
            amount=scheduled.amount,
            type_id=scheduled.type_id,
            category=scheduled.category,
            date=occurrence_date,
            metadata_json=dump_metadata(
                TransactionMetadata(
                    source="scheduled_transaction",
                    scheduled_transaction_id=scheduled.id,
                )
            ),
        )
        self.session.add(txn)
        self.session.flush()
        # a concurrent run inserting the same date fails the unique constraint
        # at commit and the whole definition is rolled back
        self.session.add(
            ScheduledTransactionExecution(
                scheduled_transaction_id=scheduled.id,
                execution_date=occurrence_date,
                transaction_id=txn.id,
            )
        )
        self.session.flush()
        logger.info(
            f"scheduled_posted: id={scheduled.id} date={occurrence_date} txn={txn.id}"
        )
        return True
