from datetime import datetime

import pytest

from conftest import auth_header, insert_order, make_user
from orders import OrderService


def list_orders(client, admin, **params):
    return client.get("/admin/orders", params=params, headers=auth_header(admin))


def test_admin_routes_require_admin_role(client, user):
    assert list_orders(client, user).status_code == 403
    assert client.get("/admin/orders/stats", headers=auth_header(user)).status_code == 403
    assert client.get("/admin/orders/stats").status_code == 401


def test_super_admin_is_an_admin(client, db):
    boss = make_user(db, name="Boss", email="boss@example.com", role="super admin")
    assert list_orders(client, boss).status_code == 200


def test_pagination_metadata_and_newest_first(client, db, admin):
    ids = [insert_order(db, amount=i, created_at=datetime(2026, 1, 1 + i)) for i in range(25)]
    body = list_orders(client, admin, page=1, limit=10).json()
    assert body["pagination"] == {"page": 1, "limit": 10, "total": 25, "totalPages": 3}
    assert [o["id"] for o in body["orders"]] == list(reversed(ids))[:10]

    last = list_orders(client, admin, page=3, limit=10).json()
    assert len(last["orders"]) == 5


def test_page_beyond_total_is_empty(client, db, admin):
    insert_order(db)
    res = list_orders(client, admin, page=5, limit=10)
    assert res.status_code == 200
    assert res.json()["orders"] == []
    assert res.json()["pagination"]["totalPages"] == 1


@pytest.mark.parametrize("page,limit", [("abc", "xyz"), ("0", "-5"), ("", "")])
def test_malformed_pagination_falls_back_to_defaults(client, db, admin, page, limit):
    for _ in range(12):
        insert_order(db)
    body = list_orders(client, admin, page=page, limit=limit).json()
    assert body["pagination"]["page"] == 1
    assert body["pagination"]["limit"] == 10
    assert len(body["orders"]) == 10


def test_filter_by_status_and_search(client, db, admin):
    insert_order(db, status="pending", name="Meera Iyer", email="meera@example.com", title="Web Design")
    insert_order(db, status="completed", name="Kabir", email="kabir@example.com", title="Python Basics")
    insert_order(db, status="completed", name="Zoya", email="zoya@example.com", title="Web Design", order_id="ORD777")

    body = list_orders(client, admin, status="completed").json()
    assert {o["user"]["name"] for o in body["orders"]} == {"Kabir", "Zoya"}

    assert len(list_orders(client, admin, search="web design").json()["orders"]) == 2
    assert len(list_orders(client, admin, search="MEERA@").json()["orders"]) == 1
    assert len(list_orders(client, admin, search="ord777").json()["orders"]) == 1
    assert list_orders(client, admin, search="web", status="pending").json()["pagination"]["total"] == 1
    assert list_orders(client, admin, search="(").json()["orders"] == []


def test_list_includes_stats_block(client, db, admin):
    insert_order(db, status="completed", amount=100)
    stats = list_orders(client, admin).json()["stats"]
    assert stats["totalOrders"] == 1
    assert stats["totalRevenue"] == 100


def test_aggregate_statistics(db):
    insert_order(db, status="completed", amount=100)
    insert_order(db, status="pending", amount=50)
    insert_order(db, status="completed", amount=200)

    overview = OrderService(db).overview()
    assert overview["totalOrders"] == 3
    assert overview["totalRevenue"] == 300
    assert overview["completedOrders"] == 2
    assert overview["pendingOrders"] == 1
    assert overview["processingOrders"] == 0
    assert overview["cancelledOrders"] == 0
    assert overview["averageOrderValue"] == pytest.approx(350 / 3)


def test_delivered_counts_as_completed_revenue(db):
    insert_order(db, status="delivered", amount=80)
    insert_order(db, status="cancelled", amount=40)
    overview = OrderService(db).overview()
    assert overview["totalRevenue"] == 80
    assert overview["completedOrders"] == 1
    assert overview["cancelledOrders"] == 1


def test_stats_on_empty_collection(client, admin):
    body = client.get("/admin/orders/stats", headers=auth_header(admin)).json()
    assert body["overview"] == {
        "totalOrders": 0,
        "totalRevenue": 0,
        "averageOrderValue": 0,
        "pendingOrders": 0,
        "processingOrders": 0,
        "completedOrders": 0,
        "cancelledOrders": 0,
    }
    assert body["monthlyStats"] == []


def test_monthly_revenue_for_current_year(db):
    insert_order(db, status="completed", amount=100, created_at=datetime(2026, 3, 2))
    insert_order(db, status="delivered", amount=50, created_at=datetime(2026, 3, 20))
    insert_order(db, status="completed", amount=70, created_at=datetime(2026, 1, 5))
    insert_order(db, status="pending", amount=999, created_at=datetime(2026, 1, 6))
    insert_order(db, status="completed", amount=500, created_at=datetime(2025, 12, 31))

    monthly = OrderService(db).monthly_revenue(now=datetime(2026, 6, 1))
    assert monthly == [
        {"year": 2026, "month": 1, "revenue": 70, "orders": 1},
        {"year": 2026, "month": 3, "revenue": 150, "orders": 2},
    ]


def test_update_status_validation(client, db, admin):
    order_id = insert_order(db)
    url = f"/admin/orders/{order_id}/status"
    assert client.put(url, json={"status": "shipped"}, headers=auth_header(admin)).status_code == 400
    assert client.put(url, json={}, headers=auth_header(admin)).status_code == 400
    assert client.put("/admin/orders/64b000000000000000000000/status", json={"status": "processing"},
                      headers=auth_header(admin)).status_code == 404

    res = client.put(url, json={"status": "processing"}, headers=auth_header(admin))
    assert res.status_code == 200
    assert res.json()["order"]["orderStatus"] == "processing"


def test_terminal_status_cannot_be_left_without_force(client, db, admin):
    order_id = insert_order(db, status="completed")
    url = f"/admin/orders/{order_id}/status"
    res = client.put(url, json={"status": "pending"}, headers=auth_header(admin))
    assert res.status_code == 400
    assert "Cannot change order status" in res.json()["detail"]

    res = client.put(url, json={"status": "cancelled", "force": True}, headers=auth_header(admin))
    assert res.status_code == 200
    assert res.json()["order"]["orderStatus"] == "cancelled"


def test_same_status_update_is_a_no_op(client, db, admin):
    order_id = insert_order(db, status="cancelled")
    res = client.put(f"/admin/orders/{order_id}/status", json={"status": "cancelled"}, headers=auth_header(admin))
    assert res.status_code == 200


def test_storage_guard_blocks_second_active_order(client, db, admin, user, course_id):
    service = OrderService(db)
    first = service.create_order(user, course_id, 499)
    second = service.create_order(user, course_id, 499)

    assert client.put(f"/admin/orders/{first['id']}/status", json={"status": "processing"},
                      headers=auth_header(admin)).status_code == 200
    res = client.put(f"/admin/orders/{second['id']}/status", json={"status": "completed"}, headers=auth_header(admin))
    assert res.status_code == 409
    assert db["order"].find_one({"orderId": second["orderId"]})["orderStatus"] == "pending"

    # Cancelling the first releases the slot
    client.put(f"/admin/orders/{first['id']}/status", json={"status": "cancelled"}, headers=auth_header(admin))
    assert client.put(f"/admin/orders/{second['id']}/status", json={"status": "completed"},
                      headers=auth_header(admin)).status_code == 200


@pytest.mark.parametrize("status", ["processing", "completed", "delivered"])
def test_delete_refused_for_active_orders(client, db, admin, status):
    order_id = insert_order(db, status=status)
    res = client.delete(f"/admin/orders/{order_id}", headers=auth_header(admin))
    assert res.status_code == 400
    assert res.json()["detail"] == "Cannot delete an order in progress or completed"
    assert db["order"].count_documents({}) == 1


@pytest.mark.parametrize("status", ["pending", "cancelled"])
def test_delete_allowed_for_pending_or_cancelled(client, db, admin, status):
    order_id = insert_order(db, status=status)
    assert client.delete(f"/admin/orders/{order_id}", headers=auth_header(admin)).status_code == 200
    assert list_orders(client, admin).json()["orders"] == []
    assert client.delete(f"/admin/orders/{order_id}", headers=auth_header(admin)).status_code == 404


def test_status_all_means_no_filter(client, db, admin):
    insert_order(db, status="pending")
    insert_order(db, status="completed")
    body = list_orders(client, admin, status="all").json()
    assert body["pagination"]["total"] == 2


def test_unknown_status_filter_is_rejected(client, db, admin):
    insert_order(db)
    res = list_orders(client, admin, status="shipped")
    assert res.status_code == 400
    assert res.json()["detail"] == "Invalid status"
