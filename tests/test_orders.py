"""Tests for order creation and the order state machine."""

import pytest
from pymongo.errors import PyMongoError

from conftest import order_request
from errors import (
    EmptyOrder,
    Forbidden,
    InsufficientStock,
    InvalidTransition,
    NotAuthorized,
    OrderNotFound,
    ProductUnavailable,
    TotalMismatch,
    ValidationError,
)
from orders import can_cancel, compute_shipping
from schemas import OrderStatus, ProductUpdate


class TestShipping:
    def test_flat_fee_up_to_threshold(self):
        assert compute_shipping(50.0, 50.0, 10.0) == 10.0
        assert compute_shipping(12.0, 50.0, 10.0) == 10.0

    def test_free_above_threshold(self):
        assert compute_shipping(50.01, 50.0, 10.0) == 0.0

    def test_threshold_is_a_parameter(self):
        assert compute_shipping(80.0, 100.0, 7.5) == 7.5


class TestSubmitOrder:
    def test_creates_pending_order_and_takes_stock(self, orders, make_product, customer, db):
        product = make_product(price=20.0, stock=10)
        order = orders.submit_order(order_request([(product, 2)]), customer)

        assert order["status"] == "pending"
        assert order["is_paid"] is False
        assert order["user_id"] == str(customer["_id"])
        assert order["items_price"] == 40.0
        assert order["shipping_price"] == 10.0
        assert order["total_price"] == 50.0
        assert order["order_number"].startswith("DF-")
        assert order["payment_reference"].startswith("DRN-")

        stored = db["product"].find_one({"_id": product["_id"]})
        assert stored["stock"] == 8
        assert stored["sold"] == 2

    def test_total_is_items_plus_shipping(self, orders, make_product, customer):
        a = make_product(name="Moi Moi", price=3.35, stock=10)
        b = make_product(name="Chapman", price=4.1, stock=10)
        order = orders.submit_order(order_request([(a, 3), (b, 1)]), customer)
        assert order["total_price"] == order["items_price"] + order["shipping_price"]

    def test_line_items_are_snapshots(self, orders, catalog, make_product, customer, db):
        product = make_product(name="Egusi Soup", price=30.0, image="egusi.jpg")
        order = orders.submit_order(order_request([(product, 1)]), customer)

        catalog.update_product(str(product["_id"]), ProductUpdate(price=45.0, name="Egusi Deluxe"))

        stored = db["order"].find_one({"_id": order["_id"]})
        item = stored["order_items"][0]
        assert item["name"] == "Egusi Soup"
        assert item["price"] == 30.0
        assert item["image"] == "egusi.jpg"
        assert stored["items_price"] == 30.0

    def test_free_shipping_above_threshold(self, orders, make_product, customer):
        product = make_product(price=30.0)
        order = orders.submit_order(order_request([(product, 2)]), customer)
        assert order["shipping_price"] == 0.0
        assert order["total_price"] == 60.0

    def test_cash_on_delivery_has_no_payment_reference(self, orders, make_product, customer):
        product = make_product()
        order = orders.submit_order(
            order_request([(product, 1)], payment_method="cash_on_delivery"), customer
        )
        assert order["payment_method"] == "cash_on_delivery"
        assert order["payment_reference"] is None

    def test_records_new_order_notification(self, orders, make_product, customer, db):
        product = make_product()
        order = orders.submit_order(order_request([(product, 1)]), customer)
        note = db["notification"].find_one({"order_id": str(order["_id"])})
        assert note["type"] == "new_order"
        assert order["order_number"] in note["message"]

    def test_guest_order(self, orders, make_product):
        product = make_product()
        order = orders.submit_order(order_request([(product, 1)], guest_email="Guest@Example.com"))
        assert order["user_id"] is None
        assert order["guest_email"] == "guest@example.com"

    def test_guest_order_requires_email(self, orders, make_product):
        product = make_product()
        with pytest.raises(ValidationError):
            orders.submit_order(order_request([(product, 1)]))

    def test_empty_order(self, orders, customer):
        with pytest.raises(EmptyOrder):
            orders.submit_order(order_request([]), customer)

    def test_insufficient_stock_mutates_nothing(self, orders, make_product, customer, db):
        product = make_product(stock=2)
        with pytest.raises(InsufficientStock):
            orders.submit_order(order_request([(product, 3)]), customer)
        assert db["product"].find_one({"_id": product["_id"]})["stock"] == 2
        assert db["order"].count_documents({}) == 0

    def test_inactive_product_unavailable(self, orders, catalog, make_product, customer):
        product = make_product()
        catalog.deactivate_product(str(product["_id"]))
        with pytest.raises(ProductUnavailable):
            orders.submit_order(order_request([(product, 1)]), customer)

    def test_unknown_product_unavailable(self, orders, make_product, customer):
        product = make_product()
        product["_id"] = "5f1d7f1d7f1d7f1d7f1d7f1d"
        with pytest.raises(ProductUnavailable):
            orders.submit_order(order_request([(product, 1)]), customer)

    @pytest.mark.parametrize("field", ["items_price", "shipping_price", "total_price"])
    def test_total_mismatch(self, orders, make_product, customer, db, field):
        product = make_product(price=20.0, stock=5)
        request = order_request([(product, 1)])
        setattr(request, field, getattr(request, field) + 0.01)
        with pytest.raises(TotalMismatch):
            orders.submit_order(request, customer)
        assert db["order"].count_documents({}) == 0
        assert db["product"].find_one({"_id": product["_id"]})["stock"] == 5

    def test_prices_come_from_catalog(self, orders, make_product, customer):
        product = make_product(price=20.0)
        stale = dict(product, price=15.0)
        with pytest.raises(TotalMismatch):
            orders.submit_order(order_request([(stale, 1)]), customer)

    def test_lost_race_rolls_back_earlier_lines(self, orders, catalog, make_product, customer, db, monkeypatch):
        rice = make_product(name="Ofada Rice", price=10.0, stock=5)
        last_one = make_product(name="Pepper Soup", price=10.0, stock=1)
        # both lines pass the availability check, then someone else buys the last unit
        stale = {str(rice["_id"]): rice, str(last_one["_id"]): last_one}
        monkeypatch.setattr(catalog, "get_active_by_id", lambda product_id: stale.get(product_id))
        catalog.adjust_stock(str(last_one["_id"]), -1)

        with pytest.raises(InsufficientStock):
            orders.submit_order(order_request([(rice, 2), (last_one, 1)]), customer)

        stored_rice = db["product"].find_one({"_id": rice["_id"]})
        assert stored_rice["stock"] == 5
        assert stored_rice["sold"] == 0
        assert db["product"].find_one({"_id": last_one["_id"]})["stock"] == 0
        assert db["order"].count_documents({}) == 0

    def test_last_unit_sold_once(self, orders, make_product, customer, other_customer, db):
        product = make_product(price=10.0, stock=1)
        first = orders.submit_order(order_request([(product, 1)]), customer)
        with pytest.raises(InsufficientStock):
            orders.submit_order(order_request([(product, 1)]), other_customer)
        assert first["status"] == "pending"
        assert db["product"].find_one({"_id": product["_id"]})["stock"] == 0
        assert db["order"].count_documents({}) == 1

    def test_failed_insert_returns_stock(self, orders, make_product, customer, db, monkeypatch):
        product = make_product(stock=4)

        def broken_insert(*args, **kwargs):
            raise PyMongoError("write failed")

        monkeypatch.setattr("orders.create_document", broken_insert)
        with pytest.raises(PyMongoError):
            orders.submit_order(order_request([(product, 3)]), customer)
        stored = db["product"].find_one({"_id": product["_id"]})
        assert stored["stock"] == 4
        assert stored["sold"] == 0


class TestReadAccess:
    def test_owner_can_read(self, orders, make_product, customer):
        order = orders.submit_order(order_request([(make_product(), 1)]), customer)
        assert orders.get_order_for(str(order["_id"]), customer)["_id"] == order["_id"]

    def test_admin_can_read(self, orders, make_product, customer, admin):
        order = orders.submit_order(order_request([(make_product(), 1)]), customer)
        assert orders.get_order_for(str(order["_id"]), admin)["_id"] == order["_id"]

    def test_other_user_denied(self, orders, make_product, customer, other_customer):
        order = orders.submit_order(order_request([(make_product(), 1)]), customer)
        with pytest.raises(NotAuthorized):
            orders.get_order_for(str(order["_id"]), other_customer)

    def test_guest_with_matching_email(self, orders, make_product):
        order = orders.submit_order(order_request([(make_product(), 1)], guest_email="a@b.com"))
        assert orders.get_order_for(str(order["_id"]), None, "A@B.com")["_id"] == order["_id"]

    def test_guest_with_wrong_or_missing_email(self, orders, make_product):
        order = orders.submit_order(order_request([(make_product(), 1)], guest_email="a@b.com"))
        with pytest.raises(NotAuthorized):
            orders.get_order_for(str(order["_id"]), None, "c@d.com")
        with pytest.raises(NotAuthorized):
            orders.get_order_for(str(order["_id"]), None, None)

    def test_guest_email_does_not_open_user_orders(self, orders, make_product, customer):
        order = orders.submit_order(order_request([(make_product(), 1)]), customer)
        with pytest.raises(NotAuthorized):
            orders.get_order_for(str(order["_id"]), None, customer["email"])

    def test_missing_order(self, orders, admin):
        with pytest.raises(OrderNotFound):
            orders.get_order_for("5f1d7f1d7f1d7f1d7f1d7f1d", admin)


class TestMarkPaid:
    def test_moves_pending_to_processing(self, orders, make_product, customer):
        order = orders.submit_order(order_request([(make_product(), 1)]), customer)
        paid, applied = orders.mark_paid(str(order["_id"]), {"id": "tx1", "status": "success"})
        assert applied is True
        assert paid["is_paid"] is True
        assert paid["paid_at"] is not None
        assert paid["status"] == "processing"
        assert paid["payment_status"] == "paid"
        assert paid["payment_result"]["id"] == "tx1"

    def test_twice_credits_once(self, orders, make_product, customer, users, db):
        order = orders.submit_order(order_request([(make_product(price=30.0), 2)]), customer)
        first, applied_first = orders.mark_paid(str(order["_id"]))
        second, applied_second = orders.mark_paid(str(order["_id"]))

        assert (applied_first, applied_second) == (True, False)
        assert second["paid_at"] == first["paid_at"]
        assert second["status"] == first["status"]
        assert users.get(str(customer["_id"]))["total_purchases"] == 60.0
        assert db["notification"].count_documents({"type": "payment_received"}) == 1

    def test_retry_finishes_interrupted_credit(self, orders, make_product, customer, users, db):
        order = orders.submit_order(order_request([(make_product(price=30.0), 2)]), customer)
        # paid flag written, crash before the spend was credited
        db["order"].update_one({"_id": order["_id"]}, {"$set": {"is_paid": True, "status": "processing"}})
        _, applied = orders.mark_paid(str(order["_id"]))
        assert applied is False
        orders.mark_paid(str(order["_id"]))
        assert users.get(str(customer["_id"]))["total_purchases"] == 60.0

    def test_updates_reward_tier(self, orders, make_product, customer, users):
        product = make_product(price=60000.0, stock=3)
        order = orders.submit_order(order_request([(product, 1)]), customer)
        orders.mark_paid(str(order["_id"]))
        user = users.get(str(customer["_id"]))
        assert user["total_purchases"] == 60000.0
        assert user["reward_tier"] == "silver"

    def test_guest_order_credits_nobody(self, orders, make_product, db):
        order = orders.submit_order(order_request([(make_product(), 1)], guest_email="a@b.com"))
        paid, applied = orders.mark_paid(str(order["_id"]))
        assert applied is True
        assert paid["purchases_credited"] is False

    def test_paying_manually_advanced_order_keeps_status(self, orders, make_product, customer, admin):
        order = orders.submit_order(
            order_request([(make_product(), 1)], payment_method="bank_transfer"), customer
        )
        orders.update_status(str(order["_id"]), OrderStatus.PROCESSING, admin)
        orders.update_status(str(order["_id"]), OrderStatus.SHIPPED, admin)
        paid, applied = orders.mark_paid(str(order["_id"]))
        assert applied is True
        assert paid["status"] == "shipped"
        assert paid["is_paid"] is True

    def test_cancelled_order_cannot_be_paid(self, orders, make_product, customer):
        order = orders.submit_order(order_request([(make_product(), 1)]), customer)
        orders.cancel(str(order["_id"]), customer)
        with pytest.raises(InvalidTransition):
            orders.mark_paid(str(order["_id"]))

    def test_missing_order(self, orders):
        with pytest.raises(OrderNotFound):
            orders.mark_paid("5f1d7f1d7f1d7f1d7f1d7f1d")


class TestDeliveryAndStatus:
    def test_deliver(self, orders, make_product, customer):
        order = orders.submit_order(order_request([(make_product(), 1)]), customer)
        orders.mark_paid(str(order["_id"]))
        delivered = orders.mark_delivered(str(order["_id"]))
        assert delivered["status"] == "delivered"
        assert delivered["is_delivered"] is True
        assert delivered["delivered_at"] is not None

    def test_deliver_unpaid_order_is_allowed(self, orders, make_product, customer):
        order = orders.submit_order(order_request([(make_product(), 1)]), customer)
        delivered = orders.mark_delivered(str(order["_id"]))
        assert delivered["status"] == "delivered"
        assert delivered["is_paid"] is False

    def test_deliver_twice_is_noop(self, orders, make_product, customer):
        order = orders.submit_order(order_request([(make_product(), 1)]), customer)
        first = orders.mark_delivered(str(order["_id"]))
        second = orders.mark_delivered(str(order["_id"]))
        assert second["delivered_at"] == first["delivered_at"]

    def test_cancelled_order_cannot_be_delivered(self, orders, make_product, customer):
        order = orders.submit_order(order_request([(make_product(), 1)]), customer)
        orders.cancel(str(order["_id"]), customer)
        with pytest.raises(InvalidTransition):
            orders.mark_delivered(str(order["_id"]))

    def test_forward_moves(self, orders, make_product, customer, admin):
        order = orders.submit_order(order_request([(make_product(), 1)]), customer)
        assert orders.update_status(str(order["_id"]), OrderStatus.PROCESSING, admin)["status"] == "processing"
        assert orders.update_status(str(order["_id"]), OrderStatus.SHIPPED, admin)["status"] == "shipped"
        assert orders.update_status(str(order["_id"]), OrderStatus.DELIVERED, admin)["status"] == "delivered"

    def test_cannot_skip_or_go_back(self, orders, make_product, customer, admin):
        order = orders.submit_order(order_request([(make_product(), 1)]), customer)
        with pytest.raises(InvalidTransition):
            orders.update_status(str(order["_id"]), OrderStatus.SHIPPED, admin)
        orders.update_status(str(order["_id"]), OrderStatus.PROCESSING, admin)
        with pytest.raises(InvalidTransition):
            orders.update_status(str(order["_id"]), OrderStatus.PENDING, admin)


class TestCancel:
    def test_owner_cancels_and_stock_returns(self, orders, make_product, customer, db):
        product = make_product(stock=5)
        order = orders.submit_order(order_request([(product, 2)]), customer)
        assert can_cancel(order)
        cancelled = orders.cancel(str(order["_id"]), customer)
        assert cancelled["status"] == "cancelled"
        assert not can_cancel(cancelled)
        stored = db["product"].find_one({"_id": product["_id"]})
        assert stored["stock"] == 5
        assert stored["sold"] == 2

    def test_cancel_processing_order(self, orders, make_product, customer, admin):
        order = orders.submit_order(order_request([(make_product(), 1)]), customer)
        orders.mark_paid(str(order["_id"]))
        assert orders.cancel(str(order["_id"]), admin)["status"] == "cancelled"

    def test_cannot_cancel_delivered(self, orders, make_product, customer, admin):
        order = orders.submit_order(order_request([(make_product(), 1)]), customer)
        orders.mark_delivered(str(order["_id"]))
        with pytest.raises(InvalidTransition):
            orders.cancel(str(order["_id"]), admin)

    def test_cannot_cancel_twice(self, orders, make_product, customer, db):
        product = make_product(stock=5)
        order = orders.submit_order(order_request([(product, 2)]), customer)
        orders.cancel(str(order["_id"]), customer)
        with pytest.raises(InvalidTransition):
            orders.cancel(str(order["_id"]), customer)
        assert db["product"].find_one({"_id": product["_id"]})["stock"] == 5

    def test_stranger_cannot_cancel(self, orders, make_product, customer, other_customer):
        order = orders.submit_order(order_request([(make_product(), 1)]), customer)
        with pytest.raises(Forbidden):
            orders.cancel(str(order["_id"]), other_customer)


class TestListing:
    def test_list_for_user(self, orders, make_product, customer, other_customer):
        product = make_product(stock=10)
        orders.submit_order(order_request([(product, 1)]), customer)
        orders.submit_order(order_request([(product, 1)]), customer)
        orders.submit_order(order_request([(product, 1)]), other_customer)
        mine = orders.list_for_user(customer)
        assert len(mine) == 2
        assert mine[0]["created_at"] >= mine[1]["created_at"]
        assert {o["user_id"] for o in mine} == {str(customer["_id"])}

    def test_list_orders_paginates(self, orders, make_product, customer):
        product = make_product(stock=20)
        for _ in range(12):
            orders.submit_order(order_request([(product, 1)]), customer)
        result = orders.list_orders(page=2)
        assert result["total"] == 12
        assert result["pages"] == 2
        assert len(result["orders"]) == 2
