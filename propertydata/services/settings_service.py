"""Read access to the administrative settings record"""
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.models import Settings


class SettingsService:
    """Looks up the settings row owned by the admin surface"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_first_settings(self) -> Optional[Settings]:
        """Return the first settings row ordered by id, or None when the table is empty."""
        result = await self.session.execute(
            select(Settings).order_by(Settings.id.asc()).limit(1)
        )
        return result.scalars().first()

    async def get_import_url(self) -> Optional[str]:
        """Return the configured dataset URL, if any."""
        record = await self.get_first_settings()
        if record is None or not record.dataset_point_of_view_url:
            return None
        return record.dataset_point_of_view_url
