from decimal import Decimal


def _product(client, sku: str, qty: int = 0, price: str = "10.00") -> dict:
    r = client.post(
        "/v1/products",
        json={"sku": sku, "name": f"Product {sku}", "unit_price": price, "initial_quantity": qty},
    )
    assert r.status_code == 200, r.text
    return r.json()


def _stock(client, product_id: int) -> int:
    r = client.get(f"/v1/stock/{product_id}")
    assert r.status_code == 200, r.text
    return r.json()["on_hand_quantity"]


def test_health(client):
    r = client.get("/v1/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_product_initial_stock_is_a_movement(client):
    p = _product(client, "API-1", qty=12)
    assert p["on_hand_quantity"] == 12

    r = client.get(f"/v1/stock/{p['id']}/movements")
    assert r.status_code == 200
    [mv] = r.json()
    assert Decimal(mv["delta"]) == 12
    assert Decimal(mv["quantity_after"]) == 12

    dup = client.post("/v1/products", json={"sku": "API-1", "name": "again"})
    assert dup.status_code == 409


def test_purchase_order_flow(client):
    p = _product(client, "API-PO")
    supplier = client.post("/v1/suppliers", json={"name": "ACME"}).json()

    po = client.post(
        "/v1/purchase-orders",
        json={"supplier_id": supplier["id"], "lines": [{"product_id": p["id"], "quantity": 50, "unit_cost": "2.00"}]},
    ).json()
    assert po["status"] == "DRAFT"
    line_id = po["lines"][0]["id"]

    # réception impossible avant approbation
    early = client.post(f"/v1/purchase-orders/{po['id']}/receive", json={"lines": {str(line_id): 10}})
    assert early.status_code == 400
    assert early.json()["detail"]["errors"][0]["code"] == "INVALID_TRANSITION"

    assert client.post(f"/v1/purchase-orders/{po['id']}/submit").status_code == 200
    assert client.post(f"/v1/purchase-orders/{po['id']}/approve").status_code == 200

    r = client.post(f"/v1/purchase-orders/{po['id']}/receive", json={"lines": {str(line_id): 30}})
    assert r.status_code == 200, r.text
    assert r.json()["applied"][0]["delta"] == 30
    assert _stock(client, p["id"]) == 30

    # rejouer la même requête ne change rien
    again = client.post(f"/v1/purchase-orders/{po['id']}/receive", json={"lines": {str(line_id): 30}})
    assert again.status_code == 200
    assert _stock(client, p["id"]) == 30

    r = client.post(f"/v1/purchase-orders/{po['id']}/receive", json={"lines": {str(line_id): 50}})
    assert r.json()["status"] == "RECEIVED"
    assert r.json()["fully_received"] is True
    assert _stock(client, p["id"]) == 50


def test_purchase_order_stale_expected_status(client):
    p = _product(client, "API-PO2")
    supplier = client.post("/v1/suppliers", json={"name": "Stale"}).json()
    po = client.post(
        "/v1/purchase-orders",
        json={"supplier_id": supplier["id"], "lines": [{"product_id": p["id"], "quantity": 5, "unit_cost": "1"}]},
    ).json()

    r = client.post(f"/v1/purchase-orders/{po['id']}/submit", json={"expected_status": "APPROVED"})
    assert r.status_code == 409
    assert r.json()["detail"]["errors"][0]["code"] == "CONFLICTING_TRANSITION"


def test_customer_order_shortage_is_400(client):
    p = _product(client, "API-CO", qty=3)
    customer = client.post("/v1/customers", json={"name": "Ana"}).json()

    order = client.post(
        "/v1/customer-orders",
        json={"customer_id": customer["id"], "lines": [{"product_id": p["id"], "quantity": 5}]},
    ).json()
    assert order["status"] == "PENDING"
    assert order["stock_reserved"] is False

    r = client.post(f"/v1/customer-orders/{order['id']}/status", json={"status": "CONFIRMED"})
    assert r.status_code == 400
    [err] = r.json()["detail"]["errors"]
    assert err["code"] == "INSUFFICIENT_STOCK"
    assert err["shortfall"] == "2"
    assert _stock(client, p["id"]) == 3


def test_customer_order_reserve_and_cancel(client):
    p = _product(client, "API-CO2", qty=30)
    customer = client.post("/v1/customers", json={"name": "Ben"}).json()
    order = client.post(
        "/v1/customer-orders",
        json={"customer_id": customer["id"], "lines": [{"product_id": p["id"], "quantity": 4}]},
    ).json()

    r = client.post(f"/v1/customer-orders/{order['id']}/status", json={"status": "CONFIRMED"})
    assert r.status_code == 200
    assert r.json()["effect"] == "RESERVE"
    assert _stock(client, p["id"]) == 26

    r = client.post(f"/v1/customer-orders/{order['id']}/status", json={"status": "CANCELLED"})
    assert r.json()["effect"] == "RELEASE"
    assert _stock(client, p["id"]) == 30


def test_unknown_order_is_404(client):
    r = client.get("/v1/customer-orders/9999")
    assert r.status_code == 404
    assert r.json()["detail"]["errors"][0]["code"] == "ORDER_NOT_FOUND"

    r = client.post("/v1/customer-orders/9999/status", json={"status": "CONFIRMED"})
    assert r.status_code == 404


def test_bill_creation(client):
    p = _product(client, "API-BILL", qty=5, price="5.00")

    r = client.post(
        "/v1/bills",
        json={"tax_rate": "10", "items": [{"product_id": p["id"], "quantity": 2}]},
    )
    assert r.status_code == 200, r.text
    bill = r.json()
    assert bill["status"] == "PAID"
    assert Decimal(bill["subtotal"]) == Decimal("10.00")
    assert Decimal(bill["tax_amount"]) == Decimal("1.00")
    assert Decimal(bill["total_amount"]) == Decimal("11.00")
    assert _stock(client, p["id"]) == 3

    short = client.post("/v1/bills", json={"items": [{"product_id": p["id"], "quantity": 4}]})
    assert short.status_code == 400
    assert _stock(client, p["id"]) == 3


def test_production_preview(client):
    p = _product(client, "API-PROD")
    a = client.post("/v1/production/materials", json={"name": "Flour", "initial_stock": "18", "cost_per_unit": "2"}).json()
    r = client.post(
        "/v1/production/recipes",
        json={
            "product_id": p["id"],
            "materials": [{"material_id": a["id"], "required_quantity_per_unit": "2", "wastage_percent": "10"}],
        },
    )
    assert r.status_code == 200, r.text

    r = client.post("/v1/production/preview", json={"product_id": p["id"], "quantity": 10})
    assert r.status_code == 200, r.text
    report = r.json()
    assert report["possible_quantity"] == 8
    assert report["feasible"] is False
    assert report["bottlenecks"][0]["name"] == "Flour"

    # la projection n'écrit rien
    mat = client.get("/v1/production/materials").json()
    assert Decimal(mat[0]["current_stock"]) == Decimal("18")


def test_preview_requires_exactly_one_target(client):
    r = client.post("/v1/production/preview", json={"quantity": 1})
    assert r.status_code == 422


def test_stock_correction(client):
    p = _product(client, "API-FIX", qty=5)

    r = client.post(f"/v1/stock/{p['id']}/correction", json={"delta": -9, "reason": "breakage"})
    assert r.status_code == 200, r.text
    assert r.json()["on_hand_quantity"] == 0
    assert r.json()["status"] == "OUT_OF_STOCK"

    r = client.post(f"/v1/stock/{p['id']}/correction", json={"quantity": 40, "reason": "count"})
    assert r.json()["on_hand_quantity"] == 40

    bad = client.post(f"/v1/stock/{p['id']}/correction", json={"delta": 1, "quantity": 1, "reason": "x"})
    assert bad.status_code == 422


def test_suppliers_and_customers(client):
    s = client.post("/v1/suppliers", json={"name": "Kai", "lead_time_days": 5}).json()
    assert client.post("/v1/suppliers", json={"name": "Kai"}).status_code == 409

    r = client.patch(f"/v1/suppliers/{s['id']}", json={"active": False})
    assert r.json()["active"] is False
    assert client.get("/v1/suppliers").json() == []
    assert len(client.get("/v1/suppliers", params={"include_inactive": True}).json()) == 1

    r = client.get("/v1/suppliers/9999")
    assert r.status_code == 404
    assert r.json()["detail"]["errors"][0]["code"] == "UNKNOWN_SUPPLIER"

    c = client.post("/v1/customers", json={"name": "Lani"}).json()
    assert client.get(f"/v1/customers/{c['id']}").json()["name"] == "Lani"
    assert client.get("/v1/customers/9999").status_code == 404


def test_latest_recipe_drives_new_batches(client):
    p = _product(client, "API-RCP")
    a = client.post("/v1/production/materials", json={"name": "Sugar", "initial_stock": "50"}).json()
    line = {"material_id": a["id"], "required_quantity_per_unit": "1"}

    first = client.post("/v1/production/recipes", json={"product_id": p["id"], "materials": [line]}).json()
    second = client.post("/v1/production/recipes", json={"product_id": p["id"], "materials": [line]}).json()
    assert second["active"] is True
    assert first["id"] != second["id"]

    active = client.get("/v1/production/recipes", params={"product_id": p["id"]}).json()
    assert [r["id"] for r in active] == [second["id"]]

    batch = client.post("/v1/production/batches", json={"product_id": p["id"], "quantity": 1}).json()
    assert batch["recipe_id"] == second["id"]

    r = client.delete(f"/v1/production/recipes/{second['id']}")
    assert r.status_code == 200
    assert r.json()["active"] is False

    r = client.post("/v1/production/batches", json={"product_id": p["id"], "quantity": 1})
    assert r.status_code == 404
    assert r.json()["detail"]["errors"][0]["code"] == "NO_ACTIVE_RECIPE"

    assert client.delete("/v1/production/recipes/9999").status_code == 404


def test_order_payment_status_patch(client):
    p = _product(client, "API-PAY", qty=5)
    customer = client.post("/v1/customers", json={"name": "Moana"}).json()
    order = client.post(
        "/v1/customer-orders",
        json={"customer_id": customer["id"], "lines": [{"product_id": p["id"], "quantity": 1}]},
    ).json()
    assert order["payment_status"] == "PENDING"

    r = client.patch(
        f"/v1/customer-orders/{order['id']}",
        json={"notes": "wire received", "payment_method": "transfer", "payment_status": "PAID"},
    )
    assert r.status_code == 200, r.text
    assert r.json()["payment_status"] == "PAID"
    assert r.json()["payment_method"] == "transfer"
    assert _stock(client, p["id"]) == 5


def test_inactive_product_cannot_be_billed(client):
    p = _product(client, "API-OFF", qty=5)
    assert client.delete(f"/v1/products/{p['id']}").json()["active"] is False

    r = client.post("/v1/bills", json={"items": [{"product_id": p["id"], "quantity": 1}]})
    assert r.status_code == 400
    assert r.json()["detail"]["errors"][0]["code"] == "INACTIVE_PRODUCT"
    assert _stock(client, p["id"]) == 5
