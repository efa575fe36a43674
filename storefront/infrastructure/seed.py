"""Demo catalog seeding.

Populates a fresh store with a handful of products covering every
category, sized and unsized, so the checkout flow can be exercised
without an external catalog service.
"""

import inspect

import structlog

from storefront.domain.repositories import CatalogProduct
from storefront.domain.value_objects import Money, ProductCategory, Size

logger = structlog.get_logger()

_APPAREL_SIZES = (Size.S, Size.M, Size.L, Size.XL)


def demo_catalog(currency: str = "INR") -> list[CatalogProduct]:
    """Build the demo product list. Prices are in minor units."""
    return [
        CatalogProduct(
            product_ref="men-oxford-shirt",
            name="Oxford Cotton Shirt",
            category=ProductCategory.MEN,
            unit_price=Money(149900, currency),
            discount_price=Money(119900, currency),
            stock=40,
            sizes=_APPAREL_SIZES,
        ),
        CatalogProduct(
            product_ref="men-chino-trousers",
            name="Slim Fit Chinos",
            category=ProductCategory.MEN,
            unit_price=Money(199900, currency),
            stock=25,
            sizes=(Size.M, Size.L, Size.XL, Size.XXL),
        ),
        CatalogProduct(
            product_ref="women-linen-kurta",
            name="Linen Kurta",
            category=ProductCategory.WOMEN,
            unit_price=Money(179900, currency),
            stock=30,
            sizes=(Size.XS, Size.S, Size.M, Size.L),
        ),
        CatalogProduct(
            product_ref="women-silk-stole",
            name="Silk Stole",
            category=ProductCategory.WOMEN,
            unit_price=Money(89900, currency),
            stock=15,
            sizes=(Size.FREE_SIZE,),
        ),
        CatalogProduct(
            product_ref="acc-leather-wallet",
            name="Leather Wallet",
            category=ProductCategory.ACCESSORIES,
            unit_price=Money(99900, currency),
            stock=50,
        ),
        CatalogProduct(
            product_ref="acc-canvas-tote",
            name="Canvas Tote Bag",
            category=ProductCategory.ACCESSORIES,
            unit_price=Money(59900, currency),
            stock=3,
        ),
    ]


async def seed_catalog(store, currency: str = "INR") -> int:
    """Add the demo products to a store.

    Args:
        store: An ``InMemoryStore`` or ``SqlAlchemyStore``.
        currency: Store currency.

    Returns:
        Number of products seeded.
    """
    products = demo_catalog(currency)
    for product in products:
        result = store.add_product(product)
        if inspect.isawaitable(result):
            await result
    logger.info("Demo catalog seeded", products=len(products))
    return len(products)
