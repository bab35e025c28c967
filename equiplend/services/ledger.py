# equiplend/services/ledger.py
"""
Availability ledger over serialized asset units.

Only two writes exist: mark units unavailable and mark them available.
Every availability change in the system goes through here, either as a
standalone batch or staged into the batch of a borrow transition.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from loguru import logger

from equiplend.core.exceptions import ConsistencyError, ValidationError
from equiplend.db.store import ASSET_UNITS, Store, WriteBatch, WriteConflict


@dataclass
class LedgerResult:
    matched: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.matched and bool(self.skipped)


def _normalise(codes: Iterable[str]) -> List[str]:
    seen = []
    for code in codes:
        code = (code or "").strip()
        if code and code not in seen: seen.append(code)
    return seen


class AvailabilityLedger:

    def __init__(self, store: Store):
        self.store = store

    async def _stage(self, batch: WriteBatch, codes: Iterable[str], available: bool,
                     require_available: bool = False, borrow_id: Optional[str] = None,
                     owners: Optional[Dict[str, str]] = None) -> LedgerResult:
        wanted = _normalise(codes)
        units = await self.store.get_many(ASSET_UNITS, wanted)
        result = LedgerResult()
        for code in wanted:
            unit = units.get(code)
            if unit is None:
                result.skipped.append(code)
                continue
            expected_owner = (owners or {}).get(code)
            if expected_owner and unit.get("equipment_id") != expected_owner:
                raise ValidationError(f"Asset unit '{code}' does not belong to equipment '{expected_owner}'.",
                                      serial_code=code, equipment_id=expected_owner)
            if require_available and not unit.get("available", False):
                raise ValidationError(f"Asset unit '{code}' is already on loan or out of service.", serial_code=code)
            expect = {"available": True} if require_available else None
            fields: Dict[str, Any] = {"available": available}
            if available:
                fields["borrow_id"] = None
            elif borrow_id:
                fields["borrow_id"] = borrow_id
            batch.update(ASSET_UNITS, code, fields, expect=expect)
            result.matched.append(code)

        if result.skipped:
            logger.warning(f"Ledger skipped unknown serial code(s): {result.skipped}")
        if result.empty:
            logger.warning(f"Ledger batch matched no asset unit (codes: {wanted}).")
        return result

    async def stage_unavailable(self, batch: WriteBatch, codes: Iterable[str], require_available: bool = False,
                                borrow_id: Optional[str] = None,
                                owners: Optional[Dict[str, str]] = None) -> LedgerResult:
        """
        Take units out of circulation. `borrow_id` is stamped on each unit as
        its active loan; `owners` maps a code to the equipment it must belong to.
        """
        return await self._stage(batch, codes, False, require_available=require_available,
                                 borrow_id=borrow_id, owners=owners)

    async def stage_available(self, batch: WriteBatch, codes: Iterable[str]) -> LedgerResult:
        return await self._stage(batch, codes, True)

    async def _commit(self, batch: WriteBatch, result: LedgerResult) -> LedgerResult:
        try:
            await self.store.commit(batch)
        except WriteConflict as e:
            # a unit read a moment ago vanished before the commit
            raise ConsistencyError(f"Ledger batch aborted: {e}", codes=result.matched) from e
        return result

    async def mark_unavailable(self, codes: Iterable[str]) -> LedgerResult:
        batch = WriteBatch()
        result = await self.stage_unavailable(batch, codes)
        await self._commit(batch, result)
        logger.info(f"Marked {len(result.matched)} unit(s) unavailable.")
        return result

    async def mark_available(self, codes: Iterable[str]) -> LedgerResult:
        batch = WriteBatch()
        result = await self.stage_available(batch, codes)
        await self._commit(batch, result)
        logger.info(f"Marked {len(result.matched)} unit(s) available.")
        return result

    async def is_available(self, code: str) -> bool:
        unit = await self.store.get(ASSET_UNITS, code)
        return bool(unit and unit.get("available"))
