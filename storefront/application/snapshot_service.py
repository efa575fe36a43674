"""Cart snapshot service.

Freezes a mutable cart, or a single "buy now" item, into an immutable
priced ``OrderDraft``. Prices and stock are re-read from the catalog at
snapshot time; the stock check here is best-effort, the atomic
decrement at order commit is the final authority.
"""

from collections import defaultdict

import structlog

from storefront.application.results import SnapshotResult
from storefront.domain.entities import DraftSource, OrderDraft, OrderLine, SizedLine, UnsizedLine
from storefront.domain.exceptions import (
    DomainError,
    EmptyCartError,
    InvalidQuantityError,
    NotFoundError,
    SizeNotApplicableError,
    SizeRequiredError,
    StockUnavailableError,
    ValidationError,
)
from storefront.domain.repositories import CartProvider, CatalogProduct, CatalogReader
from storefront.domain.value_objects import CartLine, ShippingAddress

logger = structlog.get_logger()


class CartSnapshotService:
    """Builds order drafts from carts and buy-now selections.

    The service only reads; it never mutates the cart.
    """

    def __init__(self, catalog: CatalogReader, carts: CartProvider, currency: str = "INR") -> None:
        """Initialize service.

        Args:
            catalog: Catalog collaborator for current price and stock.
            carts: Cart collaborator.
            currency: Store currency all prices must be in.
        """
        self.catalog = catalog
        self.carts = carts
        self.currency = currency

    async def snapshot(
        self,
        user_id: str,
        source: list[CartLine] | CartLine,
        quantity_override: int | None = None,
        shipping_address: ShippingAddress | None = None,
    ) -> SnapshotResult:
        """Freeze a selection into a draft.

        Args:
            user_id: Owner of the selection.
            source: Cart lines, or one buy-now line.
            quantity_override: Replaces the quantity of a single buy-now line.
            shipping_address: Address to carry on the draft, if known.

        Returns:
            SnapshotResult with the draft, or the first validation error.
        """
        try:
            draft = await self._build(user_id, source, quantity_override, shipping_address)
        except DomainError as e:
            logger.info(
                "Snapshot rejected",
                user_id=user_id,
                error_code=e.error_code,
                details=e.details,
            )
            return SnapshotResult(error=e)

        logger.info(
            "Snapshot created",
            user_id=user_id,
            draft_id=draft.draft_id,
            source=draft.source.value,
            lines=len(draft.lines),
            subtotal=draft.subtotal.amount_minor,
        )
        return SnapshotResult(draft=draft)

    async def snapshot_for_user(
        self,
        user_id: str,
        buy_now: CartLine | None = None,
        quantity_override: int | None = None,
        shipping_address: ShippingAddress | None = None,
    ) -> SnapshotResult:
        """Snapshot the buy-now item if given, otherwise the user's cart."""
        source: list[CartLine] | CartLine = (
            buy_now if buy_now is not None else await self.carts.get_cart(user_id)
        )
        return await self.snapshot(user_id, source, quantity_override, shipping_address)

    async def _build(
        self,
        user_id: str,
        source: list[CartLine] | CartLine,
        quantity_override: int | None,
        shipping_address: ShippingAddress | None,
    ) -> OrderDraft:
        if isinstance(source, CartLine):
            draft_source = DraftSource.BUY_NOW
            items = [source]
        else:
            draft_source = DraftSource.CART
            items = list(source)

        if not items:
            raise EmptyCartError(user_id)

        if quantity_override is not None:
            if len(items) != 1:
                raise ValidationError(
                    "Quantity override applies to a single item only",
                    field="quantity",
                )
            items = [CartLine(items[0].product_ref, quantity_override, items[0].size)]

        lines: list[OrderLine] = []
        requested: dict[str, int] = defaultdict(int)
        products: dict[str, CatalogProduct] = {}

        for item in items:
            if isinstance(item.quantity, bool) or not isinstance(item.quantity, int) or item.quantity <= 0:
                raise InvalidQuantityError(item.product_ref, item.quantity)

            product = products.get(item.product_ref) or await self.catalog.get_product(item.product_ref)
            if product is None or not product.is_active:
                raise NotFoundError("Product", item.product_ref)
            products[item.product_ref] = product

            lines.append(self._price_line(product, item))
            requested[item.product_ref] += item.quantity

        for product_ref, quantity in requested.items():
            available = products[product_ref].stock
            if quantity > available:
                raise StockUnavailableError(product_ref, requested=quantity, available=available)

        return OrderDraft.build(
            user_id=user_id,
            lines=lines,
            currency=self.currency,
            source=draft_source,
            shipping_address=shipping_address,
            buy_now=items[0] if draft_source == DraftSource.BUY_NOW else None,
        )

    @staticmethod
    def _price_line(product: CatalogProduct, item: CartLine) -> OrderLine:
        available_sizes = [s.value for s in product.sizes]
        common = {
            "product_ref": product.product_ref,
            "name": product.name,
            "category": product.category,
            "quantity": item.quantity,
            "unit_price": product.selling_price,
        }
        if product.is_sized:
            if item.size is None:
                raise SizeRequiredError(product.product_ref, available_sizes)
            if item.size not in product.sizes:
                raise SizeNotApplicableError(product.product_ref, item.size.value, available_sizes)
            return SizedLine(size=item.size, **common)

        if item.size is not None:
            raise SizeNotApplicableError(product.product_ref, item.size.value)
        return UnsizedLine(**common)
