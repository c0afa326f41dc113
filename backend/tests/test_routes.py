"""
HTTP-level tests: authentication, role gates and the main order flow.
"""


def _order_payload(cylinder, **extra):
    payload = {
        "delivery_address_text": "Av. Grau 890, Trujillo",
        "cylinder_type_id": cylinder.id,
        "action_type": "exchange",
        "cylinder_quantity": 1,
    }
    payload.update(extra)
    return payload


# =============================================================================
# AUTH
# =============================================================================

def test_login_and_me(client, customer_user):
    resp = client.post("/api/auth/login", json={"username": "maria", "password": "Password123"})
    assert resp.status_code == 200
    token = resp.get_json()["token"]

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    body = me.get_json()
    assert body["user"]["username"] == "maria"
    assert body["customer"]["loyalty_points"] == 0


def test_login_warns_then_locks(client, customer_user):
    resp = client.post("/api/auth/login", json={"username": "maria", "password": "nope"})
    assert resp.status_code == 401
    assert "warning" not in resp.get_json()

    resp = client.post("/api/auth/login", json={"username": "maria", "password": "nope"})
    assert resp.status_code == 401
    assert resp.get_json()["warning"].startswith("3 attempts")

    for _ in range(2):
        client.post("/api/auth/login", json={"username": "maria", "password": "nope"})
    resp = client.post("/api/auth/login", json={"username": "maria", "password": "nope"})
    assert resp.status_code == 429

    resp = client.post("/api/auth/login", json={"username": "maria", "password": "Password123"})
    assert resp.status_code == 429


def test_logout_revokes_token(client, customer_user, auth_headers):
    headers = auth_headers(customer_user)

    assert client.post("/api/auth/logout", headers=headers).status_code == 200
    assert client.get("/api/auth/me", headers=headers).status_code == 401


def test_register_route(client, db_session):
    resp = client.post("/api/auth/register", json={
        "username": "rosa",
        "full_name": "Rosa Vargas",
        "password": "Password123",
    })

    assert resp.status_code == 201
    assert resp.get_json()["user"]["role"] == "cliente"


def test_register_weak_password(client, db_session):
    resp = client.post("/api/auth/register", json={
        "username": "rosa",
        "full_name": "Rosa Vargas",
        "password": "weak",
    })
    assert resp.status_code == 400


def test_deactivating_user_revokes_sessions(client, driver, manager, auth_headers):
    driver_headers = auth_headers(driver)

    resp = client.patch(
        f"/api/auth/users/{driver.id}/active",
        json={"is_active": False},
        headers=auth_headers(manager),
    )

    assert resp.status_code == 200
    assert resp.get_json()["sessions_revoked"] == 1
    assert client.get("/api/auth/me", headers=driver_headers).status_code == 401


# =============================================================================
# ROLE GATES
# =============================================================================

def test_missing_token_is_401(client, db_session):
    assert client.get("/api/orders/mine").status_code == 401
    assert client.get("/api/orders/mine", headers={"Authorization": "Bearer bogus"}).status_code == 401


def test_wrong_role_is_403(client, driver, auth_headers, cylinder):
    resp = client.post("/api/orders", json=_order_payload(cylinder), headers=auth_headers(driver))

    assert resp.status_code == 403
    assert resp.get_json()["required_roles"] == ["cliente"]


# =============================================================================
# ORDER FLOW
# =============================================================================

def test_order_flow(client, stocked, cylinder, customer_user, dispatcher, driver, accountant, auth_headers):
    customer_h = auth_headers(customer_user)

    resp = client.post("/api/orders", json=_order_payload(cylinder), headers=customer_h)
    assert resp.status_code == 201
    body = resp.get_json()
    assert body["total"] == "97.00"
    order_id = body["order_id"]

    assert client.post(f"/api/orders/{order_id}/approve", headers=auth_headers(dispatcher)).status_code == 200

    resp = client.post(
        f"/api/deliveries/orders/{order_id}/assign",
        json={"delivery_person_id": driver.id},
        headers=auth_headers(dispatcher),
    )
    assert resp.status_code == 200

    driver_h = auth_headers(driver)
    assert client.post(f"/api/deliveries/orders/{order_id}/start", headers=driver_h).status_code == 200
    resp = client.post(
        f"/api/deliveries/orders/{order_id}/complete",
        json={"collection_method": "cash", "amount_collected": "97.00"},
        headers=driver_h,
    )
    assert resp.status_code == 200
    payment_id = resp.get_json()["payment"]["id"]

    resp = client.post(
        f"/api/payments/{payment_id}/verify",
        json={"approved": True},
        headers=auth_headers(accountant),
    )
    assert resp.status_code == 200

    loyalty = client.get("/api/customers/me/loyalty", headers=customer_h).get_json()
    assert loyalty["loyalty_points"] == 97

    resp = client.post(f"/api/payments/{payment_id}/verify", json={"approved": True}, headers=auth_headers(accountant))
    assert resp.status_code == 409


def test_insufficient_stock_returns_409(client, warehouse, cylinder, customer_user, auth_headers):
    resp = client.post("/api/orders", json=_order_payload(cylinder), headers=auth_headers(customer_user))

    assert resp.status_code == 409
    assert resp.get_json()["details"]["current_quantity"] == 0


def test_invalid_order_returns_400(client, stocked, cylinder, customer_user, auth_headers):
    resp = client.post(
        "/api/orders",
        json=_order_payload(cylinder, cylinder_quantity=0),
        headers=auth_headers(customer_user),
    )
    assert resp.status_code == 400


def test_customer_cancel_route(client, stocked, cylinder, customer_user, auth_headers):
    headers = auth_headers(customer_user)
    order_id = client.post("/api/orders", json=_order_payload(cylinder), headers=headers).get_json()["order_id"]

    resp = client.post(f"/api/orders/{order_id}/cancel", json={"reason": "Duplicate"}, headers=headers)

    assert resp.status_code == 200
    assert resp.get_json()["order"]["order_status"] == "cancelled"


# =============================================================================
# INVENTORY AND CONFIG
# =============================================================================

def test_restock_route(client, warehouse, cylinder, dispatcher, auth_headers):
    resp = client.post(
        "/api/inventory/restock",
        json={
            "warehouse_id": warehouse.id,
            "item_type": "cylinder",
            "item_id": cylinder.id,
            "state": "full",
            "quantity": 12,
            "notes": "Supplier delivery",
        },
        headers=auth_headers(dispatcher),
    )

    assert resp.status_code == 200
    stock = client.get("/api/inventory/stock", headers=auth_headers(dispatcher)).get_json()
    assert stock["cylinders"][0]["states"]["full"] == 12


def test_config_update_requires_manager(client, dispatcher, manager, auth_headers):
    payload = {"points_min_redeem": "150"}

    assert client.put("/api/config", json=payload, headers=auth_headers(dispatcher)).status_code == 403

    resp = client.put("/api/config", json=payload, headers=auth_headers(manager))
    assert resp.status_code == 200
    assert resp.get_json()["items"][0]["value"] == "150"


def test_config_update_invalid(client, manager, auth_headers):
    resp = client.put("/api/config", json={"points_discount_value": "abc"}, headers=auth_headers(manager))
    assert resp.status_code == 400


def test_public_config(client, db_session):
    resp = client.get("/api/config/public")
    assert resp.status_code == 200
    assert resp.get_json()["company_name"] == "GasDepot"


# =============================================================================
# CATALOG
# =============================================================================

def test_catalog_create_and_patch(client, customer_user, manager, auth_headers):
    manager_h = auth_headers(manager)

    resp = client.post(
        "/api/products/cylinders",
        json={"name": "45 kg", "price_new_cents": 52000, "price_exchange_cents": 38000},
        headers=manager_h,
    )
    assert resp.status_code == 201
    cylinder_id = resp.get_json()["cylinder_type"]["id"]

    resp = client.patch(f"/api/products/cylinders/{cylinder_id}", json={"price_exchange_cents": -1}, headers=manager_h)
    assert resp.status_code == 400

    resp = client.patch(f"/api/products/cylinders/{cylinder_id}", json={"is_available": False}, headers=manager_h)
    assert resp.status_code == 200

    listed = client.get("/api/products/cylinders", headers=auth_headers(customer_user)).get_json()
    assert listed["count"] == 0

    resp = client.post(
        "/api/products/cylinders",
        json={"name": "5 kg", "price_new_cents": 9000, "price_exchange_cents": 4500},
        headers=auth_headers(customer_user),
    )
    assert resp.status_code == 403


# =============================================================================
# SUPPLIER LOANS AND REDEMPTION
# =============================================================================

def test_supplier_loan_routes(client, stocked, cylinder, dispatcher, accountant, manager, auth_headers):
    manager_h = auth_headers(manager)
    payload = {"cylinder_type_id": cylinder.id, "quantity": 8, "supplier_info": "Solgas Trujillo"}

    assert client.post("/api/inventory/supplier-loans", json=payload, headers=auth_headers(dispatcher)).status_code == 403

    resp = client.post("/api/inventory/supplier-loans", json=payload, headers=manager_h)
    assert resp.status_code == 201
    loan_id = resp.get_json()["loan"]["id"]

    listed = client.get("/api/inventory/supplier-loans", headers=auth_headers(accountant)).get_json()
    assert [loan["id"] for loan in listed["items"]] == [loan_id]

    total = client.get("/api/inventory/stock/total", headers=auth_headers(dispatcher)).get_json()
    assert total["cylinders"][0]["supplier_loaned"] == 8
    assert total["cylinders"][0]["states"]["full"] == 10

    assert client.delete(f"/api/inventory/supplier-loans/{loan_id}", headers=manager_h).status_code == 200
    assert client.delete(f"/api/inventory/supplier-loans/{loan_id}", headers=manager_h).status_code == 404


def test_supplier_loan_invalid_quantity(client, cylinder, manager, auth_headers):
    resp = client.post(
        "/api/inventory/supplier-loans",
        json={"cylinder_type_id": cylinder.id, "quantity": 0},
        headers=auth_headers(manager),
    )
    assert resp.status_code == 400


def test_redeem_points_route(client, rich_customer, customer_user, auth_headers):
    headers = auth_headers(customer_user)

    resp = client.post("/api/customers/me/redeem-points", json={"points_to_redeem": 100}, headers=headers)
    assert resp.status_code == 200
    assert resp.get_json()["loyalty_points"] == 50

    resp = client.post("/api/customers/me/redeem-points", json={"points_to_redeem": 100}, headers=headers)
    assert resp.status_code == 409
