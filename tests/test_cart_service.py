"""
Cart engine tests.

Covers adding and merging lines, quantity updates, removal, save-for-later,
clearing, catalog sync and the expiry sweep. After every successful mutation
the stored totals must match the active lines.
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlmodel import select

from app.core.errors import InsufficientStock, InvalidQuantity, NotFound, Unavailable
from app.models.cart import Cart, CartItem
from app.services.cart import CartService


# ============================================================================
# HELPERS
# ============================================================================


@pytest.fixture
def service(session):
    return CartService(session)


def stored_cart(session, worker_id):
    return session.exec(select(Cart).where(Cart.worker_id == worker_id)).first()


def stored_items(session, cart_id, saved=False):
    return session.exec(
        select(CartItem).where(CartItem.cart_id == cart_id, CartItem.saved_for_later == saved)
    ).all()


def assert_totals_consistent(session, worker_id):
    cart = stored_cart(session, worker_id)
    items = stored_items(session, cart.id)
    assert cart.total_items == sum(item.quantity for item in items)
    assert cart.total_amount == sum((item.price_at_time * item.quantity for item in items), Decimal("0.00"))


def set_product(session, product, **changes):
    for field, value in changes.items():
        setattr(product, field, value)
    session.add(product)
    session.commit()


# ============================================================================
# GET CART
# ============================================================================


def test_get_cart_without_cart_is_empty_and_creates_nothing(session, service, worker):
    view = service.get_cart(worker.id)

    assert view.id is None
    assert view.is_empty
    assert view.total_items == 0
    assert view.total_amount == Decimal("0.00")
    assert stored_cart(session, worker.id) is None


def test_get_cart_hides_unsellable_lines_without_deleting_them(session, service, worker, make_product):
    aspirin = make_product(name="Aspirin", price=Decimal("5.00"), stock=10)
    cough = make_product(name="Cough Syrup", price=Decimal("80.00"), stock=4)
    service.add_item(worker.id, aspirin.id, 2)
    service.add_item(worker.id, cough.id, 1)

    set_product(session, cough, stock=0)
    view = service.get_cart(worker.id)

    assert [line.product_id for line in view.items] == [aspirin.id]
    assert view.total_items == 2
    assert view.total_amount == Decimal("10.00")
    cart = stored_cart(session, worker.id)
    assert len(stored_items(session, cart.id)) == 2


def test_get_cart_annotates_live_stock(service, worker, make_product):
    product = make_product(stock=7)
    view = service.add_item(worker.id, product.id, 3)

    info = view.items[0].product
    assert info.stock == 7
    assert info.max_available == 7
    assert info.available is True


def test_max_available_respects_line_cap(service, worker, make_product):
    product = make_product(stock=500)

    view = service.add_item(worker.id, product.id, 1)

    assert view.items[0].product.stock == 500
    assert view.items[0].product.max_available == 100


# ============================================================================
# ADD ITEM
# ============================================================================


class StaleLookupCartService(CartService):
    """Misses the worker's existing cart once, like a request racing another."""

    def __init__(self, session):
        super().__init__(session)
        self.misses = 1

    def _find_cart(self, worker_id):
        if self.misses:
            self.misses -= 1
            return None
        return super()._find_cart(worker_id)


def test_add_item_creates_cart_and_line(session, service, worker, make_product):
    product = make_product(price=Decimal("12.50"), stock=10)

    view = service.add_item(worker.id, product.id, 3)

    assert view.total_items == 3
    assert view.total_amount == Decimal("37.50")
    assert len(view.items) == 1
    assert view.items[0].price_at_time == Decimal("12.50")
    assert view.items[0].line_total == Decimal("37.50")

    cart = stored_cart(session, worker.id)
    assert cart.total_items == 3
    assert cart.total_amount == Decimal("37.50")


def test_add_same_product_merges_into_one_line(session, service, worker, make_product):
    product = make_product(stock=10)

    service.add_item(worker.id, product.id, 2)
    view = service.add_item(worker.id, product.id, 3)

    assert len(view.items) == 1
    assert view.items[0].quantity == 5
    assert_totals_consistent(session, worker.id)


def test_add_merge_refreshes_price_snapshot(session, service, worker, make_product):
    product = make_product(price=Decimal("10.00"), stock=10)
    service.add_item(worker.id, product.id, 2)

    set_product(session, product, price=Decimal("12.00"))
    view = service.add_item(worker.id, product.id, 1)

    assert view.items[0].price_at_time == Decimal("12.00")
    assert view.total_amount == Decimal("36.00")
    assert_totals_consistent(session, worker.id)


def test_add_beyond_stock_on_merge_is_rejected_and_cart_unchanged(session, service, worker, make_product):
    product = make_product(stock=5)
    service.add_item(worker.id, product.id, 5)

    with pytest.raises(InsufficientStock) as exc_info:
        service.add_item(worker.id, product.id, 2)

    err = exc_info.value
    assert err.available == 5
    assert err.requested == 7
    assert err.detail["can_add"] == 0
    assert "Maximum available: 0" in err.message

    cart = stored_cart(session, worker.id)
    [line] = stored_items(session, cart.id)
    assert line.quantity == 5
    assert cart.total_items == 5


def test_add_new_line_beyond_stock(session, service, worker, make_product):
    product = make_product(stock=2)

    with pytest.raises(InsufficientStock) as exc_info:
        service.add_item(worker.id, product.id, 3)

    assert exc_info.value.message == "Insufficient stock. Only 2 items available"
    assert stored_cart(session, worker.id) is None


def test_add_unknown_product(session, service, worker):
    with pytest.raises(NotFound):
        service.add_item(worker.id, 999, 1)
    assert stored_cart(session, worker.id) is None


def test_add_inactive_product(service, worker, make_product):
    product = make_product(is_active=False)

    with pytest.raises(Unavailable):
        service.add_item(worker.id, product.id, 1)


@pytest.mark.parametrize("quantity", [0, -1, 101])
def test_add_rejects_out_of_range_quantity(service, worker, make_product, quantity):
    product = make_product(stock=500)

    with pytest.raises(InvalidQuantity):
        service.add_item(worker.id, product.id, quantity)


def test_add_merge_above_quantity_cap(session, service, worker, make_product):
    product = make_product(stock=500)
    service.add_item(worker.id, product.id, 60)

    with pytest.raises(InvalidQuantity):
        service.add_item(worker.id, product.id, 50)

    cart = stored_cart(session, worker.id)
    assert stored_items(session, cart.id)[0].quantity == 60


def test_add_retries_when_cart_created_concurrently(session, service, worker, make_product):
    product = make_product(price=Decimal("5.00"), stock=10)
    service.add_item(worker.id, product.id, 2)

    view = StaleLookupCartService(session).add_item(worker.id, product.id, 1)

    assert view.items[0].quantity == 3
    assert len(session.exec(select(Cart).where(Cart.worker_id == worker.id)).all()) == 1
    assert_totals_consistent(session, worker.id)


def test_carts_are_per_worker(session, service, make_worker, make_product):
    first, second = make_worker(), make_worker()
    product = make_product(stock=10)

    service.add_item(first.id, product.id, 2)
    service.add_item(second.id, product.id, 3)

    assert stored_cart(session, first.id).total_items == 2
    assert stored_cart(session, second.id).total_items == 3


def test_mutation_rolls_expiry_forward(session, service, worker, make_product):
    product = make_product()

    before = datetime.utcnow()
    service.add_item(worker.id, product.id, 1)

    cart = stored_cart(session, worker.id)
    assert before + timedelta(days=30) <= cart.expires_at <= datetime.utcnow() + timedelta(days=30)


# ============================================================================
# UPDATE / REMOVE
# ============================================================================


def test_update_quantity_recalculates(session, service, worker, make_product):
    product = make_product(price=Decimal("4.00"), stock=10)
    view = service.add_item(worker.id, product.id, 1)

    view = service.update_quantity(worker.id, view.items[0].id, 6)

    assert view.items[0].quantity == 6
    assert view.total_amount == Decimal("24.00")
    assert_totals_consistent(session, worker.id)


def test_update_to_zero_is_rejected(session, service, worker, make_product):
    product = make_product(stock=10)
    view = service.add_item(worker.id, product.id, 4)

    with pytest.raises(InvalidQuantity):
        service.update_quantity(worker.id, view.items[0].id, 0)

    cart = stored_cart(session, worker.id)
    assert stored_items(session, cart.id)[0].quantity == 4
    assert cart.total_items == 4


def test_update_beyond_stock_is_rejected(session, service, worker, make_product):
    product = make_product(stock=5)
    view = service.add_item(worker.id, product.id, 2)

    with pytest.raises(InsufficientStock) as exc_info:
        service.update_quantity(worker.id, view.items[0].id, 6)

    assert exc_info.value.available == 5
    assert stored_cart(session, worker.id).total_items == 2


def test_update_unknown_item(service, worker, make_product):
    product = make_product()
    service.add_item(worker.id, product.id, 1)

    with pytest.raises(NotFound):
        service.update_quantity(worker.id, 999, 1)


def test_update_without_cart(service, worker):
    with pytest.raises(NotFound):
        service.update_quantity(worker.id, 1, 1)


def test_update_deactivated_product(session, service, worker, make_product):
    product = make_product()
    view = service.add_item(worker.id, product.id, 1)
    set_product(session, product, is_active=False)

    with pytest.raises(Unavailable):
        service.update_quantity(worker.id, view.items[0].id, 2)


def test_remove_item_then_remove_again(session, service, worker, make_product):
    keep = make_product(name="Keep", price=Decimal("3.00"))
    drop = make_product(name="Drop", price=Decimal("7.00"))
    service.add_item(worker.id, keep.id, 1)
    view = service.add_item(worker.id, drop.id, 2)
    drop_line = next(line for line in view.items if line.product_id == drop.id)

    view = service.remove_item(worker.id, drop_line.id)
    assert [line.product_id for line in view.items] == [keep.id]
    assert view.total_amount == Decimal("3.00")

    with pytest.raises(NotFound):
        service.remove_item(worker.id, drop_line.id)

    cart = stored_cart(session, worker.id)
    assert cart.total_items == 1
    assert cart.total_amount == Decimal("3.00")


def test_cannot_touch_another_workers_line(service, make_worker, make_product):
    owner_of_line, intruder = make_worker(), make_worker()
    product = make_product()
    view = service.add_item(owner_of_line.id, product.id, 1)
    service.add_item(intruder.id, product.id, 1)

    with pytest.raises(NotFound):
        service.remove_item(intruder.id, view.items[0].id)


# ============================================================================
# SAVE FOR LATER / MOVE TO CART
# ============================================================================


def test_save_for_later_moves_line_out_of_totals(session, service, worker, make_product):
    product = make_product(price=Decimal("9.00"))
    view = service.add_item(worker.id, product.id, 2)

    view = service.save_for_later(worker.id, view.items[0].id)

    assert view.items == []
    assert view.total_items == 0
    assert view.total_amount == Decimal("0.00")
    assert len(view.saved_items) == 1
    assert view.saved_items[0].quantity == 2
    assert view.saved_items[0].saved_at is not None
    assert_totals_consistent(session, worker.id)


def test_save_for_later_unknown_item(service, worker, make_product):
    product = make_product()
    service.add_item(worker.id, product.id, 1)

    with pytest.raises(NotFound):
        service.save_for_later(worker.id, 999)


def test_save_then_move_back_round_trip(session, service, worker, make_product):
    product = make_product(price=Decimal("6.00"), stock=10)
    view = service.add_item(worker.id, product.id, 3)
    view = service.save_for_later(worker.id, view.items[0].id)

    view = service.move_to_cart(worker.id, view.saved_items[0].id)

    assert view.saved_items == []
    assert view.items[0].quantity == 3
    assert view.items[0].price_at_time == Decimal("6.00")
    assert view.total_amount == Decimal("18.00")
    assert view.notices == []
    assert_totals_consistent(session, worker.id)


def test_move_to_cart_reports_price_change(session, service, worker, make_product):
    product = make_product(price=Decimal("6.00"), stock=10)
    view = service.add_item(worker.id, product.id, 2)
    view = service.save_for_later(worker.id, view.items[0].id)

    set_product(session, product, price=Decimal("7.50"))
    view = service.move_to_cart(worker.id, view.saved_items[0].id)

    assert view.items[0].price_at_time == Decimal("7.50")
    assert view.total_amount == Decimal("15.00")
    assert len(view.notices) == 1
    assert "Rs.6.00" in view.notices[0] and "Rs.7.50" in view.notices[0]


def test_move_to_cart_rechecks_stock(session, service, worker, make_product):
    product = make_product(stock=10)
    view = service.add_item(worker.id, product.id, 4)
    view = service.save_for_later(worker.id, view.items[0].id)
    saved_id = view.saved_items[0].id

    set_product(session, product, stock=2)
    with pytest.raises(InsufficientStock):
        service.move_to_cart(worker.id, saved_id)

    cart = stored_cart(session, worker.id)
    assert len(stored_items(session, cart.id, saved=True)) == 1
    assert stored_items(session, cart.id) == []


def test_move_to_cart_deactivated_product(session, service, worker, make_product):
    product = make_product()
    view = service.add_item(worker.id, product.id, 1)
    view = service.save_for_later(worker.id, view.items[0].id)

    set_product(session, product, is_active=False)
    with pytest.raises(Unavailable):
        service.move_to_cart(worker.id, view.saved_items[0].id)


def test_move_to_cart_unknown_saved_item(service, worker, make_product):
    product = make_product()
    view = service.add_item(worker.id, product.id, 1)

    # An active line is not a saved line
    with pytest.raises(NotFound):
        service.move_to_cart(worker.id, view.items[0].id)


def test_move_to_cart_merges_with_active_line(session, service, worker, make_product):
    product = make_product(stock=10)
    view = service.add_item(worker.id, product.id, 2)
    service.save_for_later(worker.id, view.items[0].id)
    view = service.add_item(worker.id, product.id, 3)

    view = service.move_to_cart(worker.id, view.saved_items[0].id)

    assert len(view.items) == 1
    assert view.items[0].quantity == 5
    assert view.saved_items == []
    assert_totals_consistent(session, worker.id)


# ============================================================================
# CLEAR
# ============================================================================


def test_clear_cart_empties_both_lists_and_keeps_cart(session, service, worker, make_product):
    first = make_product(name="First")
    second = make_product(name="Second")
    service.add_item(worker.id, first.id, 1)
    view = service.add_item(worker.id, second.id, 2)
    service.save_for_later(worker.id, view.items[1].id)

    view = service.clear_cart(worker.id)

    assert view.items == [] and view.saved_items == []
    assert view.total_items == 0
    cart = stored_cart(session, worker.id)
    assert cart is not None
    assert cart.total_items == 0
    assert cart.total_amount == Decimal("0.00")
    assert session.exec(select(CartItem).where(CartItem.cart_id == cart.id)).all() == []


def test_clear_without_cart(service, worker):
    with pytest.raises(NotFound):
        service.clear_cart(worker.id)


# ============================================================================
# SYNC
# ============================================================================


def test_sync_removes_out_of_stock_line(session, service, worker, make_product):
    product = make_product(name="Cetirizine", stock=5)
    service.add_item(worker.id, product.id, 2)

    set_product(session, product, stock=0)
    result = service.sync_cart(worker.id)

    assert result.has_changes is True
    assert result.message == "Cart has been updated"
    assert len(result.changes) == 1
    assert result.changes[0].action == "removed"
    assert result.changes[0].message == "Cetirizine is no longer available and was removed"
    assert result.cart.items == []

    cart = stored_cart(session, worker.id)
    assert stored_items(session, cart.id) == []
    assert cart.total_items == 0
    assert service.get_cart(worker.id).items == []


def test_sync_removes_deactivated_line(session, service, worker, make_product):
    product = make_product()
    service.add_item(worker.id, product.id, 1)

    set_product(session, product, is_active=False)
    result = service.sync_cart(worker.id)

    assert [change.action for change in result.changes] == ["removed"]


def test_sync_clamps_quantity_to_stock(session, service, worker, make_product):
    product = make_product(name="Ibuprofen", price=Decimal("2.00"), stock=10)
    service.add_item(worker.id, product.id, 8)

    set_product(session, product, stock=3)
    result = service.sync_cart(worker.id)

    [change] = result.changes
    assert change.action == "reduced"
    assert (change.old_quantity, change.new_quantity) == (8, 3)
    assert result.cart.items[0].quantity == 3
    assert result.cart.total_amount == Decimal("6.00")
    assert_totals_consistent(session, worker.id)


def test_sync_refreshes_price_and_clamps_same_line(session, service, worker, make_product):
    product = make_product(price=Decimal("10.00"), stock=10)
    service.add_item(worker.id, product.id, 5)

    set_product(session, product, price=Decimal("12.00"), stock=2)
    result = service.sync_cart(worker.id)

    assert sorted(change.action for change in result.changes) == ["price_updated", "reduced"]
    price_change = next(c for c in result.changes if c.action == "price_updated")
    assert (price_change.old_price, price_change.new_price) == (Decimal("10.00"), Decimal("12.00"))
    assert result.cart.items[0].price_at_time == Decimal("12.00")
    assert result.cart.total_amount == Decimal("24.00")
    assert_totals_consistent(session, worker.id)


def test_sync_twice_reports_no_changes_second_time(session, service, worker, make_product):
    product = make_product(price=Decimal("10.00"), stock=10)
    service.add_item(worker.id, product.id, 5)
    set_product(session, product, price=Decimal("11.00"))

    assert service.sync_cart(worker.id).has_changes is True
    second = service.sync_cart(worker.id)

    assert second.has_changes is False
    assert second.message == "Cart is up to date"
    assert second.changes == []


def test_sync_never_increases_quantity(session, service, worker, make_product):
    product = make_product(stock=4)
    service.add_item(worker.id, product.id, 2)

    set_product(session, product, stock=100)
    result = service.sync_cart(worker.id)

    assert result.has_changes is False
    assert result.cart.items[0].quantity == 2


def test_sync_without_cart(service, worker):
    result = service.sync_cart(worker.id)

    assert result.has_changes is False
    assert result.message == "Cart is empty"


def test_sync_leaves_saved_lines_alone(session, service, worker, make_product):
    product = make_product(stock=5)
    view = service.add_item(worker.id, product.id, 2)
    service.save_for_later(worker.id, view.items[0].id)

    set_product(session, product, stock=0)
    result = service.sync_cart(worker.id)

    assert result.has_changes is False
    assert len(result.cart.saved_items) == 1


# ============================================================================
# SUMMARY / EXPIRY
# ============================================================================


def test_summary_counts_unavailable_lines(session, service, worker, make_product):
    plenty = make_product(name="Plenty", stock=10)
    scarce = make_product(name="Scarce", stock=10)
    service.add_item(worker.id, plenty.id, 1)
    service.add_item(worker.id, scarce.id, 5)
    set_product(session, scarce, stock=2)

    summary = service.get_summary(worker.id)

    assert summary.unique_items == 2
    assert summary.available_items == 1
    assert summary.unavailable_items == 1
    assert summary.is_empty is False


def test_purge_expired_removes_stale_carts_only(session, service, make_worker, make_product):
    stale_worker, fresh_worker = make_worker(), make_worker()
    product = make_product()
    service.add_item(stale_worker.id, product.id, 1)
    service.add_item(fresh_worker.id, product.id, 1)

    stale = stored_cart(session, stale_worker.id)
    stale_id = stale.id
    stale.expires_at = datetime.utcnow() - timedelta(days=1)
    session.add(stale)
    session.commit()

    assert service.purge_expired() == 1

    assert stored_cart(session, stale_worker.id) is None
    assert session.exec(select(CartItem).where(CartItem.cart_id == stale_id)).all() == []
    assert stored_cart(session, fresh_worker.id) is not None


def test_purge_expired_nothing_to_do(service):
    assert service.purge_expired() == 0


def test_purge_expired_after_ttl(session, service, worker, make_product):
    product = make_product()
    service.add_item(worker.id, product.id, 1)

    assert service.purge_expired(datetime.utcnow() + timedelta(days=31)) == 1
    assert stored_cart(session, worker.id) is None
