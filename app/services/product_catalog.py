"""
Product Catalog Service - Read-only lookup of purchasable offerings.

Maps store product IDs to reward grants and membership windows.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.models import Product
from app.exceptions import CatalogError
from app.models.domain import MembershipRewards, Platform, ProductType

logger = get_logger(__name__)


def get_membership_rewards(product: Product) -> MembershipRewards:
    """
    Get the membership grant of a subscription product.

    Args:
        product: Catalog product

    Returns:
        Reward grant with period and renewal period

    Raises:
        CatalogError: If the product is not a subscription or lacks period data
    """
    if product.type != ProductType.SUBSCRIPTION:
        raise CatalogError(product.product_id, "product is not a subscription")

    if not product.period_days or not product.renewal_period_days:
        raise CatalogError(product.product_id, "membership period is not configured")

    return MembershipRewards(
        point=product.point,
        ai_point=product.ai_point,
        product_id=product.product_id,
        period_days=product.period_days,
        renewal_period_days=product.renewal_period_days,
    )


class ProductCatalogService:
    """Service for reading catalog products."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize product catalog with database session."""
        self.session = session

    async def get_product(self, product_id: str) -> Product | None:
        """Find a product by its store product ID."""
        stmt = select(Product).where(Product.product_id == product_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def require_membership_product(self, product_id: str | None) -> tuple[Product, MembershipRewards]:
        """
        Resolve a membership product and its rewards.

        Raises:
            CatalogError: If the product is missing or unusable for membership
        """
        if not product_id:
            raise CatalogError(product_id, "no membership product referenced")

        product = await self.get_product(product_id)
        if product is None:
            raise CatalogError(product_id, "product does not exist")

        return product, get_membership_rewards(product)

    async def list_subscription_products(self, platform: Platform) -> list[Product]:
        """List subscription products sold on a platform."""
        stmt = (
            select(Product)
            .where(
                Product.platform == platform.value,
                Product.type == int(ProductType.SUBSCRIPTION),
            )
            .order_by(Product.product_id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
