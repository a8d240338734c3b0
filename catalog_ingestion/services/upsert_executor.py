"""
Storage upsert executor: apply transformer operations to the catalog tables.

Contract:
    ``execute(operations)`` applies each operation in list order and returns
    one ``OperationResult`` per operation.  It never raises for a single
    operation's failure; only a failure to set up the call (for example the
    statement timeout) propagates.

Semantics:
    - Upserts look the row up by natural key.  A found row is updated only
      in the columns whose values differ; ``date_modified`` moves only then.
      A missing row is inserted.  If the insert hits a unique-key violation
      (a concurrent writer got there first) it is retried as an update.
    - Sync operations reconcile a relationship to exactly the given set:
      lookup rows (colors, vendors) are get-or-create, missing links are
      added and links outside the set are removed.
    - Ids produced by product/item upserts are threaded to later operations
      through a context dict.  An operation whose ``requires`` id is absent
      fails with ``MISSING_PARENT`` without touching storage.

Invariants enforced:
    - SAVEPOINT per operation: a failed operation leaves no partial writes
      and does not stop the operations after it.
    - Running the same list twice produces no inserts and no updates the
      second time.
    - The session is flushed, never committed.  Callers own the transaction.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import delete, select, text
from sqlalchemy import exc as sa_exc
from sqlalchemy.orm import Session

from catalog_kernel.domain.clock import Clock, SystemClock
from catalog_kernel.exceptions import (
    MissingParentError,
    StorageTimeoutError,
    UnsupportedOperationError,
)
from catalog_kernel.logging_config import get_logger

from catalog_ingestion.domain.types import (
    ITEM_ID,
    PRODUCT_ID,
    ExecutionAction,
    ExecutionResult,
    Operation,
    OperationResult,
    OperationType,
)
from catalog_ingestion.models.catalog import (
    ColorModel,
    ItemColorModel,
    ItemModel,
    ProductAttributeModel,
    ProductContentModel,
    ProductExtendedModel,
    ProductModel,
    ProductVendorModel,
    VendorModel,
)
from catalog_jobs.domain.retry_policy import classify, error_type_of
from catalog_jobs.domain.types import FailureClass

logger = get_logger("ingestion.upsert_executor")

_TIMEOUT_SQLSTATE = "57014"

# (action, entity id, changed fields)
_Outcome = tuple[ExecutionAction, UUID | None, tuple[str, ...]]


def _same(current: Any, desired: Any) -> bool:
    if isinstance(current, Decimal) or isinstance(desired, Decimal):
        if current is None or desired is None:
            return current is desired
        return Decimal(str(current)) == Decimal(str(desired))
    return current == desired


def _is_timeout(error: BaseException) -> bool:
    orig = getattr(error, "orig", None)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code == _TIMEOUT_SQLSTATE:
        return True
    return "statement timeout" in str(error).lower()


class UpsertExecutor:
    """Applies ordered catalog operations with natural-key upsert semantics."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        timeout_seconds: float | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._timeout_seconds = timeout_seconds
        self._handlers: dict[OperationType, Callable[[Operation, dict[str, Any]], _Outcome]] = {
            OperationType.UPSERT_PRODUCT: self._upsert_product,
            OperationType.UPSERT_ITEM: self._upsert_item,
            OperationType.UPSERT_PRODUCT_EXTENDED: self._upsert_extended,
            OperationType.UPSERT_PRODUCT_CONTENT: self._upsert_content,
            OperationType.SYNC_ITEM_COLORS: self._sync_item_colors,
            OperationType.SYNC_PRODUCT_VENDORS: self._sync_product_vendors,
            OperationType.SYNC_PRODUCT_ATTRIBUTES: self._sync_product_attributes,
        }

    def execute(
        self,
        operations: Sequence[Operation],
        context: Mapping[str, Any] | None = None,
    ) -> ExecutionResult:
        """Apply ``operations`` in order; one result per operation."""
        ctx: dict[str, Any] = dict(context or {})
        self._apply_statement_timeout()

        results: list[OperationResult] = []
        for index, op in enumerate(operations):
            results.append(self._execute_one(index, op, ctx))

        failed = sum(1 for r in results if not r.success)
        logger.debug(
            "operations_executed",
            extra={
                "operations": len(results),
                "successful": len(results) - failed,
                "failed": failed,
            },
        )
        return ExecutionResult(
            successful=len(results) - failed,
            failed=failed,
            results=tuple(results),
        )

    # -------------------------------------------------------------------------
    # Per-operation dispatch
    # -------------------------------------------------------------------------

    def _execute_one(self, index: int, op: Operation, ctx: dict[str, Any]) -> OperationResult:
        missing = [name for name in op.requires if ctx.get(name) is None]
        if missing:
            return self._failure(
                index, op, MissingParentError(op.type.value, op.target, missing[0])
            )

        savepoint = self._session.begin_nested()
        try:
            handler = self._handlers.get(op.type)
            if handler is None:
                raise UnsupportedOperationError(str(op.type), op.target)
            action, entity_id, changed = handler(op, ctx)
            self._session.flush()
            savepoint.commit()
        except Exception as exc:
            savepoint.rollback()
            return self._failure(index, op, self._translate(exc, op))

        return OperationResult(
            index=index,
            operation_type=op.type,
            target=op.target,
            success=True,
            action=action,
            entity_id=entity_id,
            changed_fields=changed,
        )

    def _failure(self, index: int, op: Operation, error: BaseException) -> OperationResult:
        retryable = classify(error) == FailureClass.RETRYABLE
        logger.warning(
            "operation_failed",
            extra={
                "index": index,
                "operation_type": op.type.value,
                "target": op.target,
                "error_type": error_type_of(error),
                "error_msg": str(error),
                "retryable": retryable,
            },
        )
        return OperationResult(
            index=index,
            operation_type=op.type,
            target=op.target,
            success=False,
            action=ExecutionAction.FAILED,
            error=str(error),
            error_type=error_type_of(error),
            retryable=retryable,
        )

    def _translate(self, error: Exception, op: Operation) -> BaseException:
        if isinstance(error, sa_exc.DBAPIError) and _is_timeout(error):
            return StorageTimeoutError(op.type.value, self._timeout_seconds or 0.0)
        return error

    def _apply_statement_timeout(self) -> None:
        if not self._timeout_seconds:
            return
        if self._session.get_bind().dialect.name != "postgresql":
            return
        self._session.execute(
            text("SELECT set_config('statement_timeout', :ms, true)"),
            {"ms": str(int(self._timeout_seconds * 1000))},
        )

    # -------------------------------------------------------------------------
    # Upserts
    # -------------------------------------------------------------------------

    def _now(self) -> datetime:
        return self._clock.now()

    def _upsert(
        self, model: type, key: Mapping[str, Any], payload: Mapping[str, Any]
    ) -> tuple[Any, ExecutionAction, tuple[str, ...]]:
        row = self._session.execute(select(model).filter_by(**key)).scalar_one_or_none()

        if row is None:
            now = self._now()
            insert_point = self._session.begin_nested()
            try:
                row = model(**key, **payload, date_added=now, date_modified=now)
                self._session.add(row)
                self._session.flush()
                insert_point.commit()
                return row, ExecutionAction.INSERTED, tuple(payload)
            except sa_exc.IntegrityError:
                insert_point.rollback()
                row = self._session.execute(
                    select(model).filter_by(**key)
                ).scalar_one_or_none()
                if row is None:
                    raise
                logger.info(
                    "insert_conflict_retried_as_update",
                    extra={"target": model.__tablename__, "key": dict(key)},
                )

        changed = tuple(
            column for column, value in payload.items()
            if not _same(getattr(row, column), value)
        )
        if not changed:
            return row, ExecutionAction.UNCHANGED, ()
        for column in changed:
            setattr(row, column, payload[column])
        row.date_modified = self._now()
        return row, ExecutionAction.UPDATED, changed

    def _upsert_product(self, op: Operation, ctx: dict[str, Any]) -> _Outcome:
        payload = {k: v for k, v in op.payload.items() if k != "name"}
        row, action, changed = self._upsert(ProductModel, op.key, payload)
        ctx[PRODUCT_ID] = row.id
        return action, row.id, changed

    def _upsert_item(self, op: Operation, ctx: dict[str, Any]) -> _Outcome:
        payload = {k: v for k, v in op.payload.items() if k != "code"}
        payload["product_id"] = ctx[PRODUCT_ID]
        row, action, changed = self._upsert(ItemModel, op.key, payload)
        ctx[ITEM_ID] = row.id
        return action, row.id, changed

    def _upsert_extended(self, op: Operation, ctx: dict[str, Any]) -> _Outcome:
        key = {"product_id": ctx[PRODUCT_ID]}
        row, action, changed = self._upsert(ProductExtendedModel, key, op.payload)
        return action, row.id, changed

    def _upsert_content(self, op: Operation, ctx: dict[str, Any]) -> _Outcome:
        key = {"product_id": ctx[PRODUCT_ID], **op.key}
        row, action, changed = self._upsert(ProductContentModel, key, op.payload)
        return action, row.id, changed

    # -------------------------------------------------------------------------
    # Relationship syncs
    # -------------------------------------------------------------------------

    def _get_or_create(self, model: type, name: str) -> UUID:
        row_id = self._session.execute(
            select(model.id).where(model.name == name)
        ).scalar_one_or_none()
        if row_id is not None:
            return row_id

        insert_point = self._session.begin_nested()
        try:
            row = model(name=name, date_added=self._now())
            self._session.add(row)
            self._session.flush()
            insert_point.commit()
            return row.id
        except sa_exc.IntegrityError:
            insert_point.rollback()
            return self._session.execute(
                select(model.id).where(model.name == name)
            ).scalar_one()

    def _sync_item_colors(self, op: Operation, ctx: dict[str, Any]) -> _Outcome:
        item_id = ctx[ITEM_ID]
        names: Sequence[str] = op.payload["values"]
        desired = {self._get_or_create(ColorModel, n): (pos, n) for pos, n in enumerate(names)}

        existing = {
            link.color_id: link
            for link in self._session.execute(
                select(ItemColorModel).where(ItemColorModel.item_id == item_id)
            ).scalars()
        }

        changed: list[str] = []
        for color_id, link in existing.items():
            if color_id not in desired:
                self._session.delete(link)
                changed.append(f"-{color_id}")
        for color_id, (position, name) in desired.items():
            link = existing.get(color_id)
            if link is None:
                self._session.add(
                    ItemColorModel(
                        item_id=item_id,
                        color_id=color_id,
                        position=position,
                        date_added=self._now(),
                    )
                )
                changed.append(f"+{name}")
            elif link.position != position:
                link.position = position
                changed.append(f"~{name}")

        action = ExecutionAction.SYNCED if changed else ExecutionAction.UNCHANGED
        return action, item_id, tuple(changed)

    def _sync_product_vendors(self, op: Operation, ctx: dict[str, Any]) -> _Outcome:
        product_id = ctx[PRODUCT_ID]
        desired = {
            self._get_or_create(VendorModel, n): n for n in op.payload["values"]
        }
        existing = set(
            self._session.execute(
                select(ProductVendorModel.vendor_id).where(
                    ProductVendorModel.product_id == product_id
                )
            ).scalars()
        )

        removed = existing - set(desired)
        if removed:
            self._session.execute(
                delete(ProductVendorModel).where(
                    ProductVendorModel.product_id == product_id,
                    ProductVendorModel.vendor_id.in_(removed),
                )
            )
        changed = [f"-{vendor_id}" for vendor_id in removed]
        for vendor_id, name in desired.items():
            if vendor_id not in existing:
                self._session.add(
                    ProductVendorModel(
                        product_id=product_id,
                        vendor_id=vendor_id,
                        date_added=self._now(),
                    )
                )
                changed.append(f"+{name}")

        action = ExecutionAction.SYNCED if changed else ExecutionAction.UNCHANGED
        return action, product_id, tuple(changed)

    def _sync_product_attributes(self, op: Operation, ctx: dict[str, Any]) -> _Outcome:
        product_id = ctx[PRODUCT_ID]
        kind = op.key["kind"]
        desired = list(op.payload["values"])
        existing = {
            attr.value: attr
            for attr in self._session.execute(
                select(ProductAttributeModel).where(
                    ProductAttributeModel.product_id == product_id,
                    ProductAttributeModel.kind == kind,
                )
            ).scalars()
        }

        changed: list[str] = []
        for value, attr in existing.items():
            if value not in desired:
                self._session.delete(attr)
                changed.append(f"-{value}")
        for value in desired:
            if value not in existing:
                self._session.add(
                    ProductAttributeModel(
                        product_id=product_id,
                        kind=kind,
                        value=value,
                        date_added=self._now(),
                    )
                )
                changed.append(f"+{value}")

        action = ExecutionAction.SYNCED if changed else ExecutionAction.UNCHANGED
        return action, product_id, tuple(changed)
