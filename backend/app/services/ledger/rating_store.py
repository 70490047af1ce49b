"""
Rating Store

Idempotent-increment capability over externally stored numeric counters
(player rating, abandoned-match count).

apply_delta() tries an atomic `SET field = COALESCE(field, 0) + :amount`
first. If that path errors it falls back to a locked read-modify-write.
Final failure is logged and reported as False; it never raises. The ledger
row that requested the mutation is already durable.
"""
import logging
from decimal import Decimal
from typing import Dict, Tuple, Type, Union

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models.db_models import PlayerProfileDB


logger = logging.getLogger(__name__)

Number = Union[int, float, Decimal]

# entity -> (model, key column, mutable fields)
MUTABLE_COUNTERS: Dict[str, Tuple[Type, str, Tuple[str, ...]]] = {
    "profile": (PlayerProfileDB, "user_id", ("rating", "matches_abandoned")),
}


class RatingStore:
    """Applies deltas to whitelisted counters on collaborator tables."""

    def __init__(self, db: Session):
        self.db = db

    def apply_delta(self, entity: str, entity_id: str, field: str, amount: Number) -> bool:
        """
        Add `amount` to `entity.field` for the row keyed by `entity_id`.

        Args:
            entity: Counter owner ("profile")
            entity_id: Key of the row to mutate (user id for profiles)
            field: Column to mutate ("rating", "matches_abandoned")
            amount: Signed delta

        Returns:
            True if the mutation was applied, False otherwise
        """
        model, key, fields = self._resolve(entity, field)
        if isinstance(amount, Decimal):
            amount = float(amount)

        try:
            if self._atomic_increment(model, key, entity_id, field, amount):
                return True
            logger.error(f"No {entity} row for {entity_id}; cannot apply {field} {amount:+}")
            return False
        except SQLAlchemyError as e:
            logger.warning(
                f"Atomic {entity}.{field} update failed for {entity_id}: {e}; "
                f"falling back to read-modify-write"
            )

        try:
            if self._read_modify_write(model, key, entity_id, field, amount):
                return True
            logger.error(f"No {entity} row for {entity_id}; cannot apply {field} {amount:+}")
            return False
        except SQLAlchemyError as e:
            logger.error(f"Failed to apply {entity}.{field} {amount:+} for {entity_id}: {e}")
            return False

    # =========================================================================
    # WRITE PATHS
    # =========================================================================

    def _atomic_increment(self, model, key: str, entity_id: str, field: str, amount) -> bool:
        column = getattr(model, field)
        with self.db.begin_nested():
            updated = (
                self.db.query(model)
                .filter(getattr(model, key) == entity_id)
                .update(
                    {column: func.coalesce(column, 0) + amount},
                    synchronize_session=False,
                )
            )
        return bool(updated)

    def _read_modify_write(self, model, key: str, entity_id: str, field: str, amount) -> bool:
        with self.db.begin_nested():
            row = (
                self.db.query(model)
                .filter(getattr(model, key) == entity_id)
                .with_for_update()
                .first()
            )
            if row is None:
                return False
            current = getattr(row, field) or 0
            setattr(row, field, current + amount)
            self.db.flush()
        return True

    @staticmethod
    def _resolve(entity: str, field: str):
        try:
            model, key, fields = MUTABLE_COUNTERS[entity]
        except KeyError:
            raise ValueError(f"Unknown counter entity: {entity}")
        if field not in fields:
            raise ValueError(f"Field {field!r} is not a mutable counter on {entity}")
        return model, key, fields
