from datetime import datetime, timedelta, timezone

from conftest import SHIPPING


def test_review_notifies_agent(client, make_product, agent, admin):
    product_id = make_product(agent["id"], reviewStatus="pending")
    client.put(f"/products/{product_id}/review", json={"status": "rejected", "reason": "Missing brand"},
               headers=admin["headers"])

    notes = client.get("/notifications/agent", headers=agent["headers"]).json()
    assert len(notes) == 1
    assert notes[0]["type"] == "rejection"
    assert "Missing brand" in notes[0]["message"]
    assert notes[0]["isRead"] is False


def test_sale_notifies_agent_and_records_activity(client, make_product, agent, shopper):
    product_id = make_product(agent["id"])
    client.post("/cart", json={"productId": product_id, "quantity": 2}, headers=shopper["headers"])
    client.post("/orders", json={"shippingAddress": SHIPPING, "paymentMethod": "cash"}, headers=shopper["headers"])

    notes = client.get("/notifications/agent", headers=agent["headers"]).json()
    assert [n["type"] for n in notes] == ["sale"]

    sales = client.get("/activities", params={"type": "sales"}, headers=agent["headers"]).json()
    assert [a["type"] for a in sales] == ["product_sold"]
    purchases = client.get("/activities", headers=shopper["headers"]).json()
    assert [a["type"] for a in purchases] == ["user_purchased"]


def test_notification_ownership(client, make_user, admin, agent):
    other = make_user("agent_two", role="agent")
    created = client.post("/notifications", json={"agentId": agent["id"], "type": "info", "message": "Welcome"},
                          headers=admin["headers"])
    assert created.status_code == 201
    note_id = created.json()["id"]

    assert client.put(f"/notifications/{note_id}/read", headers=other["headers"]).status_code == 403
    resp = client.put(f"/notifications/{note_id}/read", headers=agent["headers"])
    assert resp.json()["notification"]["isRead"] is True

    assert client.delete(f"/notifications/{note_id}", headers=other["headers"]).status_code == 403
    assert client.delete(f"/notifications/{note_id}", headers=agent["headers"]).status_code == 200
    assert client.get("/notifications/agent", headers=agent["headers"]).json() == []


def test_notifications_require_agent(client, shopper):
    assert client.get("/notifications/agent", headers=shopper["headers"]).status_code == 403


def test_dashboard_stats(client, make_product, agent, admin, shopper):
    product_id = make_product(agent["id"], price=1000)
    make_product(agent["id"], reviewStatus="pending")
    client.post("/cart", json={"productId": product_id}, headers=shopper["headers"])
    client.post("/orders", json={"shippingAddress": SHIPPING, "paymentMethod": "card"}, headers=shopper["headers"])

    assert client.get("/dashboard/stats", headers=shopper["headers"]).status_code == 403
    stats = client.get("/dashboard/stats", headers=admin["headers"]).json()
    assert stats == {
        "totalUsers": 3,
        "activeAgents": 1,
        "productsListed": 2,
        "pendingReviews": 1,
        "totalOrders": 1,
        "totalRevenue": 1300,
    }


def sell(client, make_product, agent, shopper):
    product_id = make_product(agent["id"])
    client.post("/cart", json={"productId": product_id}, headers=shopper["headers"])
    client.post("/orders", json={"shippingAddress": SHIPPING, "paymentMethod": "cash"}, headers=shopper["headers"])
    return product_id


def test_activity_search(client, make_product, agent, shopper):
    sell(client, make_product, agent, shopper)

    found = client.get("/activities/search", params={"q": "HANDBAG"}, headers=agent["headers"]).json()
    assert [a["title"] for a in found] == ["Product sold: Leather Handbag"]

    # regex metacharacters are matched literally
    assert client.get("/activities/search", params={"q": "sold: .*"}, headers=agent["headers"]).json() == []
    # only the caller's own activities are searched
    assert client.get("/activities/search", params={"q": "handbag"}, headers=shopper["headers"]).json() == []
    assert client.get("/activities/search", params={"q": ""}, headers=agent["headers"]).status_code == 422


def test_related_activities_include_subject(client, make_product, agent, shopper):
    sell(client, make_product, agent, shopper)

    own = client.get("/activities", headers=shopper["headers"]).json()
    assert [a["type"] for a in own] == ["user_purchased"]

    related = client.get("/activities/data-by-agent-id", headers=shopper["headers"]).json()["activities"]
    assert sorted(a["type"] for a in related) == ["product_sold", "user_purchased"]


def test_agent_notifications_are_capped_newest_first(client, db, agent):
    for n in range(25):
        db["notifications"].insert_one({
            "agent": agent["id"], "type": "info", "message": f"note {n}", "isRead": False,
            "created_at": datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=n),
        })

    notes = client.get("/notifications/agent", headers=agent["headers"]).json()
    assert len(notes) == 20
    assert notes[0]["message"] == "note 24"
    assert notes[-1]["message"] == "note 5"
