"""CreditPack repository for Renzo backend."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from renzo.models.credit_pack import CreditPack


class CreditPackRepository:
    """Repository for CreditPack entities."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, pack: CreditPack) -> CreditPack:
        """Persist new credit pack to database."""
        self.session.add(pack)
        await self.session.flush()
        return pack

    async def get_by_id(self, pack_id: str) -> CreditPack | None:
        """Retrieve credit pack by id, active or not."""
        result = await self.session.execute(select(CreditPack).where(CreditPack.id == pack_id))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def get_active_by_id(self, pack_id: str) -> CreditPack | None:
        """Retrieve credit pack by id if it is on sale."""
        result = await self.session.execute(
            select(CreditPack).where(
                CreditPack.id == pack_id,  # type: ignore[arg-type]
                CreditPack.is_active.is_(True),  # type: ignore[attr-defined]
            )
        )
        return result.scalar_one_or_none()

    async def list_active(self) -> list[CreditPack]:
        """Retrieve packs on sale in display order."""
        result = await self.session.execute(
            select(CreditPack)
            .where(CreditPack.is_active.is_(True))  # type: ignore[attr-defined]
            .order_by(CreditPack.display_order.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())
