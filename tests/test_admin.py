import csv
import io
from datetime import datetime, timedelta

from bson.objectid import ObjectId

import main
from scheduler import advance_order_statuses
from tests.conftest import auth_headers, insert_order


def test_status_override_locks_order_against_scheduler(client, db, admin, customer):
    today = datetime.now()
    soon = datetime(today.year, today.month, today.day, 23, 59)
    order = insert_order(db, customer, soon, status="Ready for Pickup", amul_gold_crates=1)

    res = client.patch(f"/api/admin/orders/{order['_id']}/status", json={"status": "Pending"},
                       headers=auth_headers(admin))
    assert res.status_code == 200
    assert res.json()["status"] == "Pending"
    assert res.json()["status_locked"] is True

    # 90 minutes before delivery the scheduler would otherwise move it on
    assert advance_order_statuses(soon - timedelta(minutes=90)) == []
    assert db["order"].find_one({"_id": order["_id"]})["status"] == "Pending"


def test_unlocking_hands_order_back_to_scheduler(client, db, admin, customer):
    today = datetime.now()
    soon = datetime(today.year, today.month, today.day, 23, 59)
    order = insert_order(db, customer, soon, status_locked=True, amul_gold_crates=1)

    res = client.patch(f"/api/admin/orders/{order['_id']}/status", json={"locked": False},
                       headers=auth_headers(admin))
    assert res.json()["status_locked"] is False
    assert len(advance_order_statuses(soon - timedelta(minutes=90))) == 1


def test_payment_status_update_does_not_lock(client, db, admin, customer):
    order = insert_order(db, customer, datetime.now() + timedelta(days=1), amul_gold_crates=1)
    res = client.patch(f"/api/admin/orders/{order['_id']}/status", json={"payment_status": "Paid"},
                       headers=auth_headers(admin))
    assert res.json()["payment_status"] == "Paid"
    assert res.json()["status_locked"] is False


def test_status_update_validation(client, db, admin, customer):
    order = insert_order(db, customer, datetime.now() + timedelta(days=1), amul_gold_crates=1)
    headers = auth_headers(admin)
    assert client.patch(f"/api/admin/orders/{order['_id']}/status", json={}, headers=headers).status_code == 400
    res = client.patch(f"/api/admin/orders/{order['_id']}/status", json={"status": "Teleported"}, headers=headers)
    assert res.status_code == 400
    res = client.patch(f"/api/admin/orders/{ObjectId()}/status", json={"status": "Delivered"}, headers=headers)
    assert res.status_code == 404


def test_admin_order_listing_filters_and_customer_info(client, db, admin, customer):
    day = datetime.now() + timedelta(days=3)
    insert_order(db, customer, day, shop_name="Shree Dairy", amul_gold_crates=1)
    insert_order(db, customer, day, shop_name="Ganesh Stores", status="Delivered", amul_gold_crates=1)

    headers = auth_headers(admin)
    orders = client.get("/api/admin/orders", headers=headers).json()
    assert len(orders) == 2
    assert orders[0]["customer_info"]["email"] == customer["email"]

    res = client.get("/api/admin/orders", params={"shop_name": "ganesh"}, headers=headers).json()
    assert [o["shop_name"] for o in res] == ["Ganesh Stores"]
    res = client.get("/api/admin/orders", params={"status": "Pending"}, headers=headers).json()
    assert [o["shop_name"] for o in res] == ["Shree Dairy"]
    res = client.get("/api/admin/orders", params={"delivery_date": day.strftime("%Y-%m-%d")}, headers=headers)
    assert len(res.json()) == 2


def test_mobile_order_review(client, db, admin, customer):
    placed = client.post("/api/customer/orders", headers=auth_headers(customer), json={
        "product_id": "p1", "product_name": "Amul Gold 500ml", "quantity": 2, "unit_price": 33,
        "payment_proof": "/uploads/upi.png",
    }).json()["orders"][0]

    headers = auth_headers(admin)
    listing = client.get("/api/admin/mobile-orders", params={"status": "pending_verification"}, headers=headers)
    assert listing.json()["count"] == 1
    assert listing.json()["orders"][0]["customer_info"]["phone"] == customer["phone"]

    res = client.patch(f"/api/admin/mobile-orders/{placed['id']}/status",
                       json={"status": "confirmed", "payment_status": "paid"}, headers=headers)
    assert res.status_code == 200
    assert res.json()["status"] == "confirmed"
    assert res.json()["payment_status"] == "paid"
    assert client.patch(f"/api/admin/mobile-orders/{placed['id']}/status", json={},
                        headers=headers).status_code == 400


def test_user_listing_hides_password_hashes(client, admin, customer, other_customer):
    res = client.get("/api/admin/users", params={"role": "customer"}, headers=auth_headers(admin))
    users = res.json()["users"]
    assert res.json()["count"] == 2
    assert all("password_hash" not in u for u in users)


def test_product_management(client, db, admin):
    headers = auth_headers(admin)
    res = client.post("/api/admin/products", headers=headers, json={
        "name": "Cow Milk 1L", "brand": "Gokul", "price": 55, "price_per_crate": 660, "stock_quantity": 5,
        "min_stock_level": 10,
    })
    assert res.status_code == 201
    product = res.json()
    assert product["stock_status"] == "low_stock"
    assert product["created_by"] == str(admin["_id"])

    res = client.put(f"/api/admin/products/{product['id']}", json={"price": 58}, headers=headers)
    assert res.json()["price"] == 58

    public = client.get("/api/products").json()
    assert public["products_by_brand"]["Gokul"][0]["name"] == "Cow Milk 1L"
    assert client.get("/api/products/brand/gokul").json()["count"] == 1

    assert client.delete(f"/api/admin/products/{product['id']}", headers=headers).status_code == 200
    assert db["product"].find_one({"_id": ObjectId(product["id"])})["is_active"] is False
    assert client.get("/api/products").json()["count"] == 0
    assert client.get(f"/api/products/{product['id']}").status_code == 404


def test_bulk_stock_update(client, db, admin):
    headers = auth_headers(admin)
    ids = [
        client.post("/api/admin/products", headers=headers, json={
            "name": name, "brand": "Amul", "price": 50, "price_per_crate": 600, "stock_quantity": 20,
        }).json()["id"]
        for name in ("Toned Milk 1L", "Gold Milk 1L", "Taaza 500ml")
    ]
    res = client.put("/api/admin/products/bulk-stock", headers=headers, json={"updates": [
        {"product_id": ids[0], "quantity": 5, "operation": "add"},
        {"product_id": ids[1], "quantity": 50, "operation": "subtract"},
        {"product_id": ids[2], "quantity": 7},
        {"product_id": "missing", "quantity": 1},
    ]})
    assert res.status_code == 200
    new = [r["new_quantity"] for r in res.json()["results"]]
    assert new == [25, 0, 7]
    assert len(res.json()["errors"]) == 1


def test_daily_delivery_csv(client, db, admin, customer):
    day = datetime.now() + timedelta(days=1)
    insert_order(db, customer, day.replace(hour=9, minute=0), shop_name="Late Shop", gokul_cow_crates=2)
    insert_order(db, customer, day.replace(hour=6, minute=0), shop_name="Early Shop", mahananda_crates=1)
    insert_order(db, customer, day + timedelta(days=1), shop_name="Next Day Shop", mahananda_crates=1)

    res = client.get("/api/admin/deliveries/csv", params={"date": day.strftime("%Y-%m-%d")},
                     headers=auth_headers(admin))
    assert res.status_code == 200
    assert res.headers["content-type"].startswith("text/csv")
    assert f"daily-deliveries-{day.strftime('%Y-%m-%d')}.csv" in res.headers["content-disposition"]
    rows = list(csv.DictReader(io.StringIO(res.text)))
    assert [r["shop_name"] for r in rows] == ["Early Shop", "Late Shop"]
    assert rows[1]["gokul_cow_crates"] == "2"


def test_dashboard_counts(client, db, admin, customer):
    insert_order(db, customer, datetime.now() + timedelta(days=1), amul_gold_crates=1)
    client.post("/api/customer/orders", headers=auth_headers(customer), json={
        "product_id": "p1", "product_name": "Amul Gold 500ml", "quantity": 2, "unit_price": 33,
        "payment_proof": "/uploads/upi.png",
    })
    stats = client.get("/api/admin/dashboard", headers=auth_headers(admin)).json()
    assert stats["total_customers"] == 1
    assert stats["total_orders"] == 2
    assert stats["today_orders"] == 2
    assert stats["pending_orders"] == 2
    assert stats["total_revenue"] == 699.0
    assert stats["recent_orders"][0]["customer_info"]["name"] == customer["name"]


def test_monthly_summary_endpoint(client, db, admin, customer):
    insert_order(db, customer, datetime.now(), shop_name="Shree Dairy", gokul_cow_crates=4)
    summary = client.get("/api/admin/monthly-summary", headers=auth_headers(admin)).json()
    assert summary["month"] == datetime.now().strftime("%Y-%m")
    assert summary["total_crates"] == 4
    assert summary["most_ordered_product"] == "gokul_cow_crates"


def test_seed_is_idempotent(client, db, admin_account):
    first = client.post("/seed").json()
    assert first["seeded_products"] == len(main.DEFAULT_PRODUCTS)
    assert first["admin_created"] is True
    assert db["user"].find_one({"email": admin_account})["role"] == "admin"

    second = client.post("/seed").json()
    assert second["seeded_products"] == 0
    assert second["admin_created"] is False


def test_health_endpoints(client):
    assert client.get("/").status_code == 200
    assert client.get("/api/health").json()["status"] == "OK"
    assert client.get("/test").json()["connection_status"] == "Connected"


def test_seed_without_admin_password_creates_no_admin(client, db, monkeypatch):
    monkeypatch.setattr(main, "ADMIN_EMAIL", "admin@kumarmilk.com")
    monkeypatch.setattr(main, "ADMIN_PASSWORD", None)
    res = client.post("/seed").json()
    assert res["admin_created"] is False
    assert db["user"].count_documents({}) == 0
    assert res["seeded_products"] == len(main.DEFAULT_PRODUCTS)
