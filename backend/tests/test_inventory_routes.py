def test_add_stock(client, db_session, product):
    resp = client.post(f"/api/inventory/{product.id}/add", json={
        "quantity": 12,
        "referenceType": "purchase_order",
        "referenceId": "PO-88",
    })

    assert resp.status_code == 201
    body = resp.get_json()
    assert body["product"]["stock_quantity"] == 17
    assert body["entry"]["change_type"] == "purchase"
    assert body["entry"]["reference_id"] == "PO-88"


def test_adjust_stock_and_history(client, db_session, product):
    resp = client.post(f"/api/inventory/{product.id}/adjust", json={"delta": -2, "reason": "breakage"})
    assert resp.status_code == 201
    assert resp.get_json()["entry"]["balance_after"] == 3

    history = client.get(f"/api/inventory/{product.id}/history").get_json()["history"]
    assert [(h["quantity_change"], h["balance_after"], h["notes"]) for h in history] == [(-2, 3, "breakage")]


def test_adjust_below_zero_is_400(client, db_session, product):
    resp = client.post(f"/api/inventory/{product.id}/adjust", json={"delta": -50, "reason": "recount"})

    assert resp.status_code == 400
    assert resp.get_json()["details"]["available"] == 5


def test_invalid_quantity_is_400(client, db_session, product):
    assert client.post(f"/api/inventory/{product.id}/add", json={"quantity": 0}).status_code == 400
    assert client.post(f"/api/inventory/{product.id}/add", json={"quantity": "ten"}).status_code == 400
    assert client.post(f"/api/inventory/{product.id}/adjust", json={"delta": 0}).status_code == 400


def test_unknown_product_is_404(client, db_session):
    assert client.post("/api/inventory/999999/add", json={"quantity": 1}).status_code == 404
    assert client.post("/api/inventory/999999/adjust", json={"delta": 1}).status_code == 404
    assert client.get("/api/inventory/999999/history").status_code == 404


def test_low_stock_and_reorder(client, db_session, make_product):
    low = make_product(name="Toner", stock=1, threshold=3)
    make_product(name="Paper", stock=100, threshold=3)

    products = client.get("/api/inventory/low-stock").get_json()["products"]
    assert [p["id"] for p in products] == [low.id]

    suggestions = client.get("/api/inventory/reorder-suggestions").get_json()["suggestions"]
    assert suggestions == [{
        "product_id": low.id,
        "product_name": "Toner",
        "current_stock": 1,
        "threshold": 3,
        "suggested_reorder_qty": 6,
        "unit": "pcs",
    }]
