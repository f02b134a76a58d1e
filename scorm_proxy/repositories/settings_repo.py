"""Repository for the live-editable ``settings`` key/value table."""
from __future__ import annotations
from typing import Dict
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from scorm_proxy.models.records import SettingRecord


class SettingsRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def load_all(self) -> Dict[str, str]:
        result = await self.session.execute(select(SettingRecord))
        return {row.key: row.value for row in result.scalars().all()}

    async def save(self, values: Dict[str, str]) -> None:
        for key, value in values.items():
            record = await self.session.get(SettingRecord, key)
            if record is None:
                self.session.add(SettingRecord(key=key, value=value))
            else:
                record.value = value
        await self.session.commit()
