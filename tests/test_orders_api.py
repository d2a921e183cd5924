"""Tests for POST /orders: the full checkout pipeline over HTTP."""

import logging
import re
from datetime import timedelta

import pytest
from sqlalchemy import func, select, update

from conftest import CUSTOMER, OTHER_CUSTOMER, order_payload
from eshop.db.models import Coupon, Customer, Order, Product, utcnow
from eshop.notifications import mailer
from eshop.store import cart_store

ORDER_NUMBER = re.compile(r"^ORD-\d{13}-[A-Z0-9]{9}$")


def order_count(db):
    return db.execute(select(func.count()).select_from(Order)).scalar_one()


def widget_items(products, quantity=1):
    return [{"product": products["widget"].id, "quantity": quantity}]


class TestCashOnDelivery:
    def test_places_order(self, client, auth, db, products, pricing, outbox):
        cart_store.put_line(CUSTOMER, products["widget"].id, 1)
        resp = client.post("/orders", json=order_payload(widget_items(products), 725), headers=auth)
        assert resp.status_code == 201
        order = resp.json()["order"]

        assert ORDER_NUMBER.match(order["orderNumber"])
        assert order["status"] == "pending"
        assert order["paymentInfo"]["method"] == "cash_on_delivery"
        assert order["paymentInfo"]["status"] == "pending"
        assert order["pricing"] == {
            "subtotal": 500.0, "discount": 0.0, "tax": 25.0, "taxRate": 0.05, "shipping": 200.0,
            "total": 725.0, "currency": "KES", "couponCode": None,
        }
        assert order["items"][0]["title"] == "Widget"
        assert order["items"][0]["price"] == 500.0
        assert order["billingAddress"] == order["shippingAddress"]
        assert [h["status"] for h in order["statusHistory"]] == ["pending"]

        assert cart_store.get_lines(CUSTOMER) == []
        assert outbox[0]["to"] == CUSTOMER
        assert outbox[0]["subject"] == f"Order Confirmation - {order['orderNumber']}"

    def test_stock_is_taken(self, client, auth, db, products, pricing):
        resp = client.post("/orders", json=order_payload(widget_items(products, 2), 1360), headers=auth)
        assert resp.status_code == 201
        assert db.get(Product, products["widget"].id).stock == 8

    def test_customer_aggregates(self, client, auth, db, products, pricing):
        client.post("/orders", json=order_payload(widget_items(products), 725), headers=auth)
        client.post("/orders", json=order_payload(widget_items(products, 2), 1360), headers=auth)
        customer = db.execute(select(Customer).where(Customer.email == CUSTOMER)).scalar_one()
        assert customer.name == "Jane Doe"
        assert customer.order_count == 2
        assert customer.total_spent == 2085
        assert customer.loyalty == "gold"

    def test_coupon_is_counted(self, client, auth, db, products, pricing, coupons):
        body = order_payload(widget_items(products, 2), 1166, appliedCoupon={"code": "SAVE10"})
        resp = client.post("/orders", json=body, headers=auth)
        assert resp.status_code == 201
        pricing_out = resp.json()["order"]["pricing"]
        assert pricing_out["discount"] == 80
        assert pricing_out["couponCode"] == "SAVE10"
        assert db.get(Coupon, coupons["SAVE10"].id).used_count == 1

    def test_explicit_location_overrides_state(self, client, auth, db, products, pricing):
        body = order_payload(widget_items(products), 725, location="Nairobi")
        body["shippingAddress"]["state"] = "Somewhere else"
        assert client.post("/orders", json=body, headers=auth).status_code == 201

    def test_email_failure_keeps_order(self, client, auth, db, products, pricing, monkeypatch):
        def broken(to, subject, body):
            raise ConnectionRefusedError("smtp down")

        monkeypatch.setattr(mailer, "send_email", broken)
        resp = client.post("/orders", json=order_payload(widget_items(products), 725), headers=auth)
        assert resp.status_code == 201
        assert order_count(db) == 1

    def test_publishes_order_created(self, client, auth, db, products, pricing, events):
        client.post("/orders", json=order_payload(widget_items(products), 725), headers=auth)
        assert events[0]["topic"] == "order.events"
        assert events[0]["value"]["type"] == "order.created"
        assert events[0]["value"]["items"] == [{"product_id": products["widget"].id, "qty": 1, "unit_price": 500.0}]


class TestRejectedCheckout:
    def test_total_mismatch_stores_nothing(self, client, auth, db, products, pricing):
        resp = client.post("/orders", json=order_payload(widget_items(products), 700), headers=auth)
        assert resp.status_code == 400
        assert resp.json()["error"] == "total_amount_mismatch"
        assert resp.json()["expectedTotal"] == 725
        assert order_count(db) == 0
        assert db.get(Product, products["widget"].id).stock == 10

    def test_insufficient_stock(self, client, auth, db, products, pricing):
        resp = client.post("/orders", json=order_payload(widget_items(products, 11), 1), headers=auth)
        assert resp.status_code == 400
        body = resp.json()
        assert body["error"] == "cart_contains_invalid_items"
        assert body["invalidItems"][0]["available"] == 10

    def test_unknown_location(self, client, auth, db, products, pricing):
        body = order_payload(widget_items(products), 725)
        body["shippingAddress"]["state"] = "Atlantis"
        resp = client.post("/orders", json=body, headers=auth)
        assert resp.status_code == 404
        assert resp.json()["error"] == "config_not_found"

    def test_unknown_shipping_method(self, client, auth, db, products, pricing):
        resp = client.post("/orders", json=order_payload(widget_items(products), 725, shipping_method="drone"),
                           headers=auth)
        assert resp.status_code == 400
        assert resp.json()["error"] == "shipping_method_unavailable"

    def test_unsupported_payment_method(self, client, auth, db, products, pricing):
        resp = client.post("/orders", json=order_payload(widget_items(products), 725, payment_method="bitcoin"),
                           headers=auth)
        assert resp.status_code == 400
        assert resp.json()["error"] == "unsupported_payment_method"

    def test_expired_coupon(self, client, auth, db, products, pricing, coupons):
        body = order_payload(widget_items(products), 725, appliedCoupon={"code": "EXPIRED"})
        resp = client.post("/orders", json=body, headers=auth)
        assert resp.status_code == 404
        assert resp.json()["error"] == "invalid_or_expired_coupon"

    def test_requires_auth(self, client, products, pricing):
        assert client.post("/orders", json=order_payload(widget_items(products), 725)).status_code == 401

    def test_empty_items_rejected(self, client, auth, pricing):
        assert client.post("/orders", json=order_payload([], 0), headers=auth).status_code == 422


class TestMpesaCheckout:
    def test_acknowledged_push_stores_order(self, client, auth, db, products, pricing, gateway):
        body = order_payload(widget_items(products), 725, payment_method="mpesa", phoneNumber="0712345678")
        resp = client.post("/orders", json=body, headers=auth)
        assert resp.status_code == 201
        order = resp.json()["order"]

        assert gateway.calls[0]["phone"] == "254712345678"
        assert gateway.calls[0]["amount"] == 725
        assert gateway.calls[0]["reference"] == order["orderNumber"]
        assert order["paymentInfo"]["phoneNumber"] == "254712345678"
        assert order["paymentInfo"]["merchantRequestId"] == "29115-34620561-1"
        assert order["paymentInfo"]["checkoutRequestId"] == "ws_CO_191220191020363925"
        assert order["paymentInfo"]["status"] == "pending"
        assert resp.json()["payment"]["ResponseCode"] == "0"
        assert db.get(Product, products["widget"].id).stock == 9

        customer = db.execute(select(Customer).where(Customer.email == CUSTOMER)).scalar_one()
        assert customer.order_count == 0

    def test_rejected_push_stores_nothing(self, client, auth, db, products, pricing, coupons, gateway):
        gateway.error = "STK Push failed: Invalid Access Token"
        body = order_payload(widget_items(products, 2), 1166, payment_method="mpesa", phoneNumber="0712345678",
                             appliedCoupon={"code": "SAVE10"})
        resp = client.post("/orders", json=body, headers=auth)
        assert resp.status_code == 502
        assert resp.json()["error"] == "payment_processing_failed"
        assert order_count(db) == 0
        assert db.get(Product, products["widget"].id).stock == 10
        assert db.get(Coupon, coupons["SAVE10"].id).used_count == 0

    def test_unacknowledged_push_stores_nothing(self, client, auth, db, products, pricing, gateway):
        gateway.response = {"ResponseCode": "1", "errorMessage": "Bad Request - Invalid PhoneNumber"}
        body = order_payload(widget_items(products), 725, payment_method="mpesa", phoneNumber="0712345678")
        resp = client.post("/orders", json=body, headers=auth)
        assert resp.status_code == 502
        assert resp.json()["reason"] == "Bad Request - Invalid PhoneNumber"
        assert order_count(db) == 0

    def test_phone_required(self, client, auth, db, products, pricing, gateway):
        body = order_payload(widget_items(products), 725, payment_method="mpesa")
        resp = client.post("/orders", json=body, headers=auth)
        assert resp.status_code == 400
        assert resp.json()["error"] == "validation_failed"
        assert gateway.calls == []

    @pytest.mark.parametrize("phone", ["0812345678", "12345"])
    def test_invalid_phone(self, client, auth, db, products, pricing, gateway, phone):
        body = order_payload(widget_items(products), 725, payment_method="mpesa", phoneNumber=phone)
        resp = client.post("/orders", json=body, headers=auth)
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_phone_number"
        assert gateway.calls == []

    def test_mismatch_never_reaches_gateway(self, client, auth, db, products, pricing, gateway):
        body = order_payload(widget_items(products), 1, payment_method="mpesa", phoneNumber="0712345678")
        assert client.post("/orders", json=body, headers=auth).status_code == 400
        assert gateway.calls == []

    def test_coupon_exhausted_after_push_is_logged(self, client, auth, db, products, pricing, coupons, gateway,
                                                     caplog):
        push = gateway.stk_push

        def push_then_lose_race(*args):
            reply = push(*args)
            db.execute(update(Coupon).where(Coupon.code == "ONCE").values(used_count=1))
            db.commit()
            return reply

        gateway.stk_push = push_then_lose_race
        body = order_payload(widget_items(products), 672.5, payment_method="mpesa", phoneNumber="0712345678",
                             appliedCoupon={"code": "ONCE"})
        with caplog.at_level(logging.ERROR, logger="eshop.orders.service"):
            resp = client.post("/orders", json=body, headers=auth)

        assert resp.status_code == 400
        assert resp.json()["error"] == "usage_limit_reached"
        assert order_count(db) == 0
        assert db.get(Product, products["widget"].id).stock == 10
        logged = [r.getMessage() for r in caplog.records if r.levelno == logging.ERROR]
        assert any("MerchantRequestID=29115-34620561-1" in m and "usage_limit_reached" in m for m in logged)


class TestReadOrders:
    def test_list_own_orders(self, client, auth, other_auth, products, pricing):
        client.post("/orders", json=order_payload(widget_items(products), 725), headers=auth)
        client.post("/orders", json=order_payload(widget_items(products, 2), 1360), headers=auth)

        resp = client.get("/orders", headers=auth)
        assert resp.status_code == 200
        body = resp.json()
        assert body["pagination"] == {"page": 1, "pages": 1, "total": 2, "limit": 10}
        assert body["orders"][0]["pricing"]["total"] == 1360

        assert client.get("/orders", headers=other_auth).json()["orders"] == []

    def test_pagination_and_filter(self, client, auth, products, pricing):
        for _ in range(3):
            client.post("/orders", json=order_payload(widget_items(products), 725), headers=auth)
        resp = client.get("/orders", params={"page": 2, "limit": 2}, headers=auth)
        assert len(resp.json()["orders"]) == 1
        assert resp.json()["pagination"]["pages"] == 2
        assert client.get("/orders", params={"status": "shipped"}, headers=auth).json()["orders"] == []

    def test_get_order_access(self, client, auth, other_auth, admin_auth, products, pricing):
        order_id = client.post("/orders", json=order_payload(widget_items(products), 725), headers=auth).json()["order"]["id"]
        assert client.get(f"/orders/{order_id}", headers=auth).status_code == 200
        assert client.get(f"/orders/{order_id}", headers=admin_auth).status_code == 200
        resp = client.get(f"/orders/{order_id}", headers=other_auth)
        assert resp.status_code == 403
        assert resp.json()["error"] == "not_order_owner"
        assert client.get("/orders/9999", headers=auth).status_code == 404

    def test_reorder_returns_items(self, client, auth, products, pricing):
        order_id = client.post("/orders", json=order_payload(widget_items(products, 2), 1360), headers=auth).json()["order"]["id"]
        resp = client.post(f"/orders/{order_id}/reorder", headers=auth)
        assert resp.status_code == 200
        assert resp.json()["items"][0]["product"] == products["widget"].id
        assert resp.json()["items"][0]["quantity"] == 2


class TestAdminOrders:
    @pytest.fixture
    def placed(self, client, auth, other_auth, products, pricing):
        ids = [
            client.post("/orders", json=order_payload(widget_items(products), 725), headers=auth).json()["order"]["id"],
            client.post("/orders", json=order_payload(widget_items(products, 2), 1360), headers=auth).json()["order"]["id"],
            client.post("/orders", json=order_payload(widget_items(products), 725), headers=other_auth).json()["order"]["id"],
        ]
        return ids

    def test_admin_sees_every_customer(self, client, admin_auth, placed):
        body = client.get("/orders", headers=admin_auth).json()
        assert body["pagination"]["total"] == 3
        assert {o["user"] for o in body["orders"]} == {CUSTOMER, OTHER_CUSTOMER}

    def test_filter_by_customer(self, client, admin_auth, placed):
        orders = client.get("/orders", params={"userId": OTHER_CUSTOMER}, headers=admin_auth).json()["orders"]
        assert [o["id"] for o in orders] == [placed[2]]

    def test_customer_cannot_widen_listing(self, client, auth, placed):
        orders = client.get("/orders", params={"userId": OTHER_CUSTOMER}, headers=auth).json()["orders"]
        assert {o["user"] for o in orders} == {CUSTOMER}
        assert len(orders) == 2

    def test_filter_by_payment_status(self, client, db, admin_auth, placed):
        db.get(Order, placed[1]).payment_status = "paid"
        db.commit()
        orders = client.get("/orders", params={"paymentStatus": "paid"}, headers=admin_auth).json()["orders"]
        assert [o["id"] for o in orders] == [placed[1]]

    def test_filter_by_date_range(self, client, db, admin_auth, placed):
        db.get(Order, placed[0]).created_at = utcnow() - timedelta(days=30)
        db.commit()
        week_ago = (utcnow() - timedelta(days=7)).isoformat()

        recent = client.get("/orders", params={"startDate": week_ago}, headers=admin_auth).json()["orders"]
        assert sorted(o["id"] for o in recent) == sorted(placed[1:])
        older = client.get("/orders", params={"endDate": week_ago}, headers=admin_auth).json()["orders"]
        assert [o["id"] for o in older] == [placed[0]]

    def test_stats_overview(self, client, auth, admin_auth, placed):
        client.put(f"/orders/{placed[0]}/cancel", headers=auth)
        resp = client.get("/orders/stats/overview", headers=admin_auth)
        assert resp.status_code == 200
        assert resp.json()["stats"] == {
            "totalOrders": 3,
            "totalRevenue": 2810,
            "averageOrderValue": 936.67,
            "pendingOrders": 2,
            "processingOrders": 0,
            "shippedOrders": 0,
            "deliveredOrders": 0,
            "cancelledOrders": 1,
        }

    def test_stats_respect_date_range(self, client, db, admin_auth, placed):
        db.get(Order, placed[0]).created_at = utcnow() - timedelta(days=30)
        db.commit()
        params = {"startDate": (utcnow() - timedelta(days=7)).isoformat()}
        stats = client.get("/orders/stats/overview", params=params, headers=admin_auth).json()["stats"]
        assert stats["totalOrders"] == 2
        assert stats["totalRevenue"] == 2085

    def test_stats_empty(self, client, admin_auth):
        stats = client.get("/orders/stats/overview", headers=admin_auth).json()["stats"]
        assert stats["totalOrders"] == 0
        assert stats["totalRevenue"] == 0
        assert stats["averageOrderValue"] == 0

    def test_stats_admin_only(self, client, auth):
        assert client.get("/orders/stats/overview", headers=auth).status_code == 403
