import uuid
from decimal import Decimal

import pytest

from storefront.core.errors import InvalidQuantity, ProductNotFound
from storefront.services.cart import CartService


@pytest.mark.asyncio
async def test_add_merges_quantities(session, user_id, product):
    cart = CartService(session)

    await cart.add_item(user_id, product.id, 1)
    snapshot = await cart.add_item(user_id, product.id, 2)

    assert len(snapshot.items) == 1
    assert snapshot.items[0].quantity == 3
    assert snapshot.items[0].price == Decimal("5000.00")
    assert snapshot.total == Decimal("15000.00")


@pytest.mark.asyncio
async def test_update_and_remove(session, user_id, product):
    cart = CartService(session)
    await cart.add_item(user_id, product.id, 1)

    snapshot = await cart.update_item(user_id, product.id, 4)
    assert snapshot.items[0].subtotal == Decimal("20000.00")

    snapshot = await cart.remove_item(user_id, product.id)
    assert snapshot.items == []


@pytest.mark.asyncio
async def test_unknown_product_and_bad_quantity(session, user_id, product):
    cart = CartService(session)

    with pytest.raises(ProductNotFound):
        await cart.add_item(user_id, uuid.uuid4(), 1)
    with pytest.raises(InvalidQuantity):
        await cart.add_item(user_id, product.id, 0)
    with pytest.raises(ProductNotFound):
        await cart.update_item(user_id, product.id, 2)


@pytest.mark.asyncio
async def test_clear_twice_is_fine(session, user_id, product):
    cart = CartService(session)
    await cart.add_item(user_id, product.id, 2)

    await cart.clear(user_id)
    await cart.clear(user_id)

    assert (await cart.detail(user_id)).items == []


@pytest.mark.asyncio
async def test_clear_only_touches_one_user(session, user_id, product):
    other = uuid.uuid4()
    cart = CartService(session)
    await cart.add_item(user_id, product.id, 1)
    await cart.add_item(other, product.id, 1)

    await cart.clear(user_id)

    assert (await cart.detail(other)).items[0].quantity == 1
