"""Decision repository boundary.

The engine only ever exchanges whole Decision values with storage. Stored
documents use the camelCase JSON shape; legacy documents are upgraded on read
by ``normalize_legacy_record`` so the rest of the engine never branches on
record shape.
"""

from abc import ABC, abstractmethod
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from db.postgres import with_retry
from models.errors import DecisionNotFoundError, StateError, ValidationError
from models.postgres import DecisionRecord
from models.schemas import DEFAULT_OPTION, NEUTRAL_EMOTION, Decision, DecisionStatus
from utils.logging import get_logger

logger = get_logger(__name__)

# Frozen once a decision leaves DRAFT
DESCRIPTIVE_FIELDS = ("title", "description", "context", "options", "emotions")


def normalize_legacy_record(raw: dict[str, Any]) -> dict[str, Any]:
    """Upgrade older stored shapes to the current Decision document.

    - a single ``emotion`` string becomes ``emotions: [emotion]``
    - a missing or empty emotion list becomes ``["Neutral"]``
    - an empty options list becomes the single default option
    - a document ``_id`` is exposed as ``id``
    """
    record = dict(raw)

    if "id" not in record and "_id" in record:
        record["id"] = str(record.pop("_id"))
    else:
        record.pop("_id", None)

    legacy_emotion = record.pop("emotion", None)
    emotions = record.get("emotions")
    if isinstance(emotions, str):
        emotions = [emotions]
    if not emotions:
        emotions = [legacy_emotion] if legacy_emotion else [NEUTRAL_EMOTION]
    record["emotions"] = emotions

    options_key = "options" if "options" in record and "optionsConsidered" not in record else "optionsConsidered"
    if not record.get(options_key):
        record[options_key] = [DEFAULT_OPTION]

    return record


def decision_from_record(raw: dict[str, Any]) -> Decision:
    return Decision.model_validate(normalize_legacy_record(raw))


def decision_to_record(decision: Decision) -> dict[str, Any]:
    return decision.model_dump(mode="json", by_alias=True)


def apply_fields(decision: Decision, fields: dict[str, Any]) -> Decision:
    """Merge partial fields into a decision, revalidating the result."""
    unknown = set(fields) - set(Decision.model_fields)
    if unknown:
        raise ValidationError(
            f"Unknown decision fields: {', '.join(sorted(unknown))}",
            details={"fields": sorted(unknown)},
        )
    for name in ("id", "user_id"):
        if name in fields and fields[name] != getattr(decision, name):
            raise ValidationError(
                "Decision identity fields are immutable", details={"field": name}
            )
    if decision.status is not DecisionStatus.DRAFT:
        frozen = [
            name
            for name in DESCRIPTIVE_FIELDS
            if name in fields and fields[name] != getattr(decision, name)
        ]
        if frozen:
            raise StateError(
                f"Cannot edit a decision in status {decision.status.value}",
                details={"decision_id": decision.id, "fields": frozen},
            )

    data = {name: getattr(decision, name) for name in Decision.model_fields}
    data.update(fields)
    try:
        return Decision.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(
            "Update would produce an invalid decision",
            details={"errors": [err["msg"] for err in e.errors()]},
        ) from e


def require_status(decision: Decision, expected_status: DecisionStatus | None) -> None:
    """Compare-and-set guard: the stored status must still be the one the caller read."""
    if expected_status is None or decision.status is expected_status:
        return
    logger.warning(
        "Decision changed concurrently",
        extra={
            "decision_id": decision.id,
            "expected": expected_status.value,
            "found": decision.status.value,
        },
    )
    raise StateError(
        f"Decision is now {decision.status.value}, expected {expected_status.value}",
        details={
            "decision_id": decision.id,
            "status": decision.status.value,
            "expected": expected_status.value,
        },
    )


class DecisionRepository(ABC):
    """Narrow persistence interface consumed by the engine."""

    @abstractmethod
    async def list(self, owner_id: str) -> list[Decision]:
        """All decisions for an owner, newest first."""
        ...

    @abstractmethod
    async def get(self, owner_id: str, decision_id: str) -> Decision:
        """Raises DecisionNotFoundError when absent or owned by someone else."""
        ...

    @abstractmethod
    async def create(self, decision: Decision) -> Decision:
        ...

    @abstractmethod
    async def update(
        self,
        owner_id: str,
        decision_id: str,
        fields: dict[str, Any],
        expected_status: DecisionStatus | None = None,
    ) -> Decision:
        """Apply fields to the stored decision.

        With ``expected_status`` the write only happens if the stored status
        still matches; otherwise StateError is raised and nothing changes.
        """
        ...

    @abstractmethod
    async def delete(self, owner_id: str, decision_id: str) -> None:
        """Raises DecisionNotFoundError when absent or owned by someone else."""
        ...


class InMemoryDecisionRepository(DecisionRepository):
    """Process-local repository storing serialized documents per owner."""

    def __init__(self, records: list[dict[str, Any]] | None = None):
        self._records: dict[str, dict[str, dict[str, Any]]] = {}
        for raw in records or []:
            owner = raw.get("userId") or raw.get("user_id")
            record_id = str(raw.get("id") or raw.get("_id"))
            self._records.setdefault(owner, {})[record_id] = dict(raw)

    async def list(self, owner_id: str) -> list[Decision]:
        records = reversed(list(self._records.get(owner_id, {}).values()))
        decisions = [decision_from_record(raw) for raw in records]
        # Newest first; equal dates put the latest insert first, undated records last
        decisions.sort(
            key=lambda d: d.date_created.timestamp() if d.date_created else float("-inf"),
            reverse=True,
        )
        return decisions

    def _load(self, owner_id: str, decision_id: str) -> Decision:
        raw = self._records.get(owner_id, {}).get(decision_id)
        if raw is None:
            raise DecisionNotFoundError(decision_id)
        return decision_from_record(raw)

    async def get(self, owner_id: str, decision_id: str) -> Decision:
        return self._load(owner_id, decision_id)

    async def create(self, decision: Decision) -> Decision:
        self._records.setdefault(decision.user_id, {})[decision.id] = decision_to_record(decision)
        return decision

    async def update(
        self,
        owner_id: str,
        decision_id: str,
        fields: dict[str, Any],
        expected_status: DecisionStatus | None = None,
    ) -> Decision:
        # No await between the status check and the write
        current = self._load(owner_id, decision_id)
        require_status(current, expected_status)
        updated = apply_fields(current, fields)
        self._records[owner_id][decision_id] = decision_to_record(updated)
        return updated

    async def delete(self, owner_id: str, decision_id: str) -> None:
        owned = self._records.get(owner_id, {})
        if decision_id not in owned:
            raise DecisionNotFoundError(decision_id)
        del owned[decision_id]


class SQLDecisionRepository(DecisionRepository):
    """SQLAlchemy-backed repository, one row per decision."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def _load_for_update(
        self, session: AsyncSession, owner_id: str, decision_id: str
    ) -> DecisionRecord:
        """Fetch the row with a write lock held until the session commits."""
        result = await session.execute(
            select(DecisionRecord).where(DecisionRecord.id == decision_id).with_for_update()
        )
        record = result.scalar_one_or_none()
        if record is None or record.user_id != owner_id:
            raise DecisionNotFoundError(decision_id)
        return record

    async def list(self, owner_id: str) -> list[Decision]:
        async def _query():
            async with self._session_maker() as session:
                result = await session.execute(
                    select(DecisionRecord)
                    .where(DecisionRecord.user_id == owner_id)
                    .order_by(DecisionRecord.created_at.desc())
                )
                return list(result.scalars().all())

        records = await with_retry(_query, operation_name="list decisions")
        return [decision_from_record(r.payload) for r in records]

    async def get(self, owner_id: str, decision_id: str) -> Decision:
        async def _query():
            async with self._session_maker() as session:
                return await session.get(DecisionRecord, decision_id)

        record = await with_retry(_query, operation_name="get decision")
        if record is None or record.user_id != owner_id:
            raise DecisionNotFoundError(decision_id)
        return decision_from_record(record.payload)

    async def create(self, decision: Decision) -> Decision:
        async with self._session_maker() as session:
            session.add(
                DecisionRecord(
                    id=decision.id,
                    user_id=decision.user_id,
                    status=decision.status.value,
                    payload=decision_to_record(decision),
                    created_at=decision.date_created,
                )
            )
            await session.commit()
        logger.debug("Decision stored", extra={"decision_id": decision.id})
        return decision

    async def update(
        self,
        owner_id: str,
        decision_id: str,
        fields: dict[str, Any],
        expected_status: DecisionStatus | None = None,
    ) -> Decision:
        async with self._session_maker() as session:
            record = await self._load_for_update(session, owner_id, decision_id)
            current = decision_from_record(record.payload)
            require_status(current, expected_status)
            updated = apply_fields(current, fields)
            record.payload = decision_to_record(updated)
            record.status = updated.status.value
            await session.commit()
        return updated

    async def delete(self, owner_id: str, decision_id: str) -> None:
        async with self._session_maker() as session:
            record = await self._load_for_update(session, owner_id, decision_id)
            await session.delete(record)
            await session.commit()
        logger.debug("Decision deleted", extra={"decision_id": decision_id})
