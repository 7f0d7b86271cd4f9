from bson import ObjectId


def test_add_to_cart_snapshots_product(client, make_product, agent, shopper):
    product_id = make_product(agent["id"], price=2500, imageUrl="https://img.example.com/bag.png")
    resp = client.post("/cart", json={"productId": product_id, "quantity": 2}, headers=shopper["headers"])
    assert resp.status_code == 200
    assert resp.json()["items"] == [{
        "product": product_id,
        "name": "Leather Handbag",
        "imageUrl": "https://img.example.com/bag.png",
        "price": 2500,
        "quantity": 2,
    }]


def test_readding_merges_quantity(client, make_product, agent, shopper):
    product_id = make_product(agent["id"])
    client.post("/cart", json={"productId": product_id, "quantity": 1}, headers=shopper["headers"])
    resp = client.post("/cart", json={"productId": product_id, "quantity": 3}, headers=shopper["headers"])
    items = resp.json()["items"]
    assert len(items) == 1
    assert items[0]["quantity"] == 4


def test_cart_respects_stock(client, make_product, agent, shopper):
    product_id = make_product(agent["id"], stock=2)
    resp = client.post("/cart", json={"productId": product_id, "quantity": 3}, headers=shopper["headers"])
    assert resp.status_code == 400
    assert "Only 2 left" in resp.json()["detail"]


def test_cannot_add_unapproved_product(client, make_product, agent, shopper):
    product_id = make_product(agent["id"], reviewStatus="pending")
    resp = client.post("/cart", json={"productId": product_id}, headers=shopper["headers"])
    assert resp.status_code == 404


def test_update_and_remove_cart_item(client, make_product, agent, shopper):
    product_id = make_product(agent["id"])
    client.post("/cart", json={"productId": product_id}, headers=shopper["headers"])

    resp = client.put(f"/cart/{product_id}", json={"quantity": 5}, headers=shopper["headers"])
    assert resp.json()["items"][0]["quantity"] == 5

    assert client.put(f"/cart/{product_id}", json={"quantity": 0}, headers=shopper["headers"]).status_code == 422

    resp = client.delete(f"/cart/{product_id}", headers=shopper["headers"])
    assert resp.json()["items"] == []
    assert client.delete(f"/cart/{product_id}", headers=shopper["headers"]).status_code == 404


def test_empty_cart_for_new_user(client, shopper):
    resp = client.get("/cart", headers=shopper["headers"])
    assert resp.status_code == 200
    assert resp.json() == {"user": shopper["id"], "items": []}


def test_wishlist_duplicate_is_conflict(client, make_product, agent, shopper):
    product_id = make_product(agent["id"])
    first = client.post("/wishlist", json={"productId": product_id}, headers=shopper["headers"])
    assert first.status_code == 200

    second = client.post("/wishlist", json={"productId": product_id}, headers=shopper["headers"])
    assert second.status_code == 409
    assert second.json()["detail"] == "Product already in wishlist."

    items = client.get("/wishlist", headers=shopper["headers"]).json()["items"]
    assert [i["product"] for i in items] == [product_id]
    assert "quantity" not in items[0]


def test_remove_from_wishlist(client, make_product, agent, shopper):
    product_id = make_product(agent["id"])
    client.post("/wishlist", json={"productId": product_id}, headers=shopper["headers"])
    assert client.delete(f"/wishlist/{product_id}", headers=shopper["headers"]).json()["items"] == []
    assert client.delete(f"/wishlist/{product_id}", headers=shopper["headers"]).status_code == 404


def test_price_change_does_not_touch_snapshots(client, db, make_product, agent, shopper):
    product_id = make_product(agent["id"], price=3000)
    client.post("/cart", json={"productId": product_id}, headers=shopper["headers"])
    client.post("/wishlist", json={"productId": product_id}, headers=shopper["headers"])

    db["products"].update_one({"_id": ObjectId(product_id)}, {"$set": {"price": 9999}})

    assert client.get("/cart", headers=shopper["headers"]).json()["items"][0]["price"] == 3000
    assert client.get("/wishlist", headers=shopper["headers"]).json()["items"][0]["price"] == 3000

    # merging into an existing line keeps the original snapshot
    resp = client.post("/cart", json={"productId": product_id}, headers=shopper["headers"])
    assert resp.json()["items"][0]["price"] == 3000


def test_upper_case_id_merges_into_existing_line(client, make_product, agent, shopper):
    product_id = make_product(agent["id"])
    client.post("/cart", json={"productId": product_id}, headers=shopper["headers"])
    resp = client.post("/cart", json={"productId": product_id.upper()}, headers=shopper["headers"])

    assert [(i["product"], i["quantity"]) for i in resp.json()["items"]] == [(product_id, 2)]

    resp = client.put(f"/cart/{product_id.upper()}", json={"quantity": 4}, headers=shopper["headers"])
    assert resp.status_code == 200
    assert resp.json()["items"][0]["quantity"] == 4

    resp = client.delete(f"/cart/{product_id.upper()}", headers=shopper["headers"])
    assert resp.json()["items"] == []


def test_upper_case_id_is_wishlist_duplicate(client, make_product, agent, shopper):
    product_id = make_product(agent["id"])
    client.post("/wishlist", json={"productId": product_id}, headers=shopper["headers"])

    second = client.post("/wishlist", json={"productId": product_id.upper()}, headers=shopper["headers"])
    assert second.status_code == 409
    assert len(client.get("/wishlist", headers=shopper["headers"]).json()["items"]) == 1

    resp = client.delete(f"/wishlist/{product_id.upper()}", headers=shopper["headers"])
    assert resp.json()["items"] == []
