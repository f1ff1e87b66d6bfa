"""Durable storage of broadcast sessions embedded in sermon documents."""

import math
import re
from collections.abc import Collection
from typing import Any, Protocol

from beanie.operators import In, Inc, RegEx, Set
from loguru import logger
from pydantic import BaseModel
from pymongo.errors import DuplicateKeyError

from smc_live.schemas import BroadcastStatus, Sermon
from smc_live.utils.app_errors import AppError, AppErrorCode, HttpStatusCode

from .broadcast_models import BroadcastSession

# Statuses whose stream key is still reserved
ISSUED_KEY_STATES = [BroadcastStatus.PENDING, BroadcastStatus.LIVE, BroadcastStatus.ENDED]


def is_key_reserved(status: BroadcastStatus) -> bool:
    return status in ISSUED_KEY_STATES


class BroadcastSessionStore(Protocol):
    async def get(self, sermon_id: str) -> BroadcastSession | None: ...

    async def find_by_stream_key(self, stream_key: str) -> BroadcastSession | None: ...

    async def stream_key_in_use(self, stream_key: str) -> bool: ...

    async def find_active(self) -> list[BroadcastSession]: ...

    async def find_live(self) -> BroadcastSession | None: ...

    async def create(self, session: BroadcastSession) -> BroadcastSession: ...

    async def update_fields(
        self,
        sermon_id: str,
        updates: dict[str, Any],
        expected_states: Collection[BroadcastStatus] | None = None,
    ) -> BroadcastSession: ...

    async def set_fields(self, sermon_id: str, updates: dict[str, Any]) -> BroadcastSession: ...

    async def adjust_viewers(self, sermon_id: str, delta: int) -> BroadcastSession: ...

    async def list_sermons(
        self,
        page: int,
        limit: int,
        category: str | None = None,
        speaker: str | None = None,
    ) -> tuple[list[BroadcastSession], int]: ...


class BeanieBroadcastSessionStore:
    """BroadcastSessionStore backed by the `sermon` collection."""

    async def _get_document(self, sermon_id: str) -> Sermon | None:
        return await Sermon.find_one(Sermon.sermon_id == sermon_id)

    async def get(self, sermon_id: str) -> BroadcastSession | None:
        sermon = await self._get_document(sermon_id)
        return BroadcastSession.from_document(sermon) if sermon else None

    async def find_by_stream_key(self, stream_key: str) -> BroadcastSession | None:
        sermon = await Sermon.find_one(
            Sermon.stream_key == stream_key,
            In(Sermon.status, ISSUED_KEY_STATES),
        )
        return BroadcastSession.from_document(sermon) if sermon else None

    async def stream_key_in_use(self, stream_key: str) -> bool:
        count = await Sermon.find(
            Sermon.stream_key == stream_key,
            In(Sermon.status, ISSUED_KEY_STATES),
        ).count()
        return count > 0

    async def find_active(self) -> list[BroadcastSession]:
        sermons = await Sermon.find(
            In(Sermon.status, BroadcastStatus.active_states()),
        ).sort(-Sermon.created_at).to_list()
        return [BroadcastSession.from_document(s) for s in sermons]

    async def find_live(self) -> BroadcastSession | None:
        sermons = await Sermon.find(
            Sermon.is_live == True,  # noqa: E712
            Sermon.status == BroadcastStatus.LIVE,
        ).sort(-Sermon.started_at).limit(1).to_list()
        return BroadcastSession.from_document(sermons[0]) if sermons else None

    async def create(self, session: BroadcastSession) -> BroadcastSession:
        sermon = Sermon.model_validate(session.model_dump(exclude_none=True))
        sermon.stream_key_reserved = is_key_reserved(sermon.status)
        try:
            await sermon.insert()
        except DuplicateKeyError as e:
            logger.warning(f"Duplicate key inserting sermon {session.sermon_id}: {e}")
            raise AppError(
                errcode=AppErrorCode.E_STREAM_KEY_IN_USE,
                errmesg=f"Stream key already issued: {session.stream_key}",
                status_code=HttpStatusCode.CONFLICT,
            ) from e

        logger.info(f"Sermon {sermon.sermon_id} created with status {sermon.status}")
        return BroadcastSession.from_document(sermon)

    async def update_fields(
        self,
        sermon_id: str,
        updates: dict[str, Any],
        expected_states: Collection[BroadcastStatus] | None = None,
    ) -> BroadcastSession:
        """Apply `updates` (field name -> value) with optimistic locking.

        Raises:
            AppError: sermon missing (E_SERMON_NOT_FOUND), status outside
                `expected_states` (E_INVALID_TRANSITION), or concurrent write
                (E_SESSION_VERSION_CONFLICT).
        """
        sermon = await self._get_document(sermon_id)
        if not sermon:
            raise AppError(
                errcode=AppErrorCode.E_SERMON_NOT_FOUND,
                errmesg=f"Sermon not found: {sermon_id}",
                status_code=HttpStatusCode.NOT_FOUND,
            )

        if expected_states is not None and sermon.status not in expected_states:
            raise AppError(
                errcode=AppErrorCode.E_INVALID_TRANSITION,
                errmesg=f"Sermon {sermon_id} is {sermon.status}, expected one of "
                f"{sorted(str(s) for s in expected_states)}",
                status_code=HttpStatusCode.CONFLICT,
            )

        updates = dict(updates)
        if "status" in updates:
            updates["stream_key_reserved"] = is_key_reserved(updates["status"])

        # Nested models are stored by field name, not by their wire aliases
        nested = {name for name, value in updates.items() if isinstance(value, BaseModel)}
        expressions = {
            getattr(Sermon, name): value.model_dump() if name in nested else value
            for name, value in updates.items()
        }
        try:
            await sermon.partial_update_with_version_check(expressions)
        except DuplicateKeyError as e:
            logger.warning(f"Duplicate key updating sermon {sermon_id}: {e}")
            raise AppError(
                errcode=AppErrorCode.E_STREAM_KEY_IN_USE,
                errmesg=f"Stream key already issued: {updates.get('stream_key')}",
                status_code=HttpStatusCode.CONFLICT,
            ) from e

        if nested:
            return await self._require(sermon_id)

        for name, value in updates.items():
            setattr(sermon, name, value)

        return BroadcastSession.from_document(sermon)

    async def set_fields(self, sermon_id: str, updates: dict[str, Any]) -> BroadcastSession:
        """Set informational fields without a version check or bump.

        For callback-driven flags (e.g. `encoder_connected`) that must not
        conflict with lifecycle writes. Never use it for `status`.
        """
        expressions = {getattr(Sermon, name): value for name, value in updates.items()}
        result = await Sermon.find_one(Sermon.sermon_id == sermon_id).update(Set(expressions))
        if not result or result.matched_count == 0:
            raise AppError(
                errcode=AppErrorCode.E_SERMON_NOT_FOUND,
                errmesg=f"Sermon not found: {sermon_id}",
                status_code=HttpStatusCode.NOT_FOUND,
            )
        return await self._require(sermon_id)

    async def adjust_viewers(self, sermon_id: str, delta: int) -> BroadcastSession:
        """Atomically add `delta` to the viewer counter. The counter never drops below zero."""
        filters = [Sermon.sermon_id == sermon_id]
        if delta < 0:
            filters.append(Sermon.viewers >= -delta)

        result = await Sermon.find_one(*filters).update(Inc({Sermon.viewers: delta}))
        if not result or result.matched_count == 0:
            # Either unknown, or already at zero
            logger.debug(f"Viewer change {delta:+d} skipped for sermon {sermon_id}")
        return await self._require(sermon_id)

    async def _require(self, sermon_id: str) -> BroadcastSession:
        sermon = await self._get_document(sermon_id)
        if not sermon:
            raise AppError(
                errcode=AppErrorCode.E_SERMON_NOT_FOUND,
                errmesg=f"Sermon not found: {sermon_id}",
                status_code=HttpStatusCode.NOT_FOUND,
            )
        return BroadcastSession.from_document(sermon)

    async def list_sermons(
        self,
        page: int,
        limit: int,
        category: str | None = None,
        speaker: str | None = None,
    ) -> tuple[list[BroadcastSession], int]:
        query = Sermon.find()
        if category:
            query = query.find(Sermon.category == category)
        if speaker:
            query = query.find(RegEx(Sermon.speaker, re.escape(speaker), "i"))

        total = await query.count()
        sermons = await query.sort(-Sermon.created_at).skip((page - 1) * limit).limit(limit).to_list()

        logger.debug(f"Listed {len(sermons)} sermons (page {page}/{max(1, math.ceil(total / limit))})")
        return [BroadcastSession.from_document(s) for s in sermons], total
