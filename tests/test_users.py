from conftest import PASSWORD


def test_signup_then_login(client):
    response = client.post("/api/auth/signup", json={
        "name": "Sari", "email": "sari@example.com", "password": "hunter22", "phone": "0812",
    })
    assert response.status_code == 200
    assert response.json()["user"]["role"] == "reseller"

    login = client.post("/api/auth/login", json={"email": "sari@example.com", "password": "hunter22"})
    token = login.json()["token"]
    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.json()["email"] == "sari@example.com"


def test_duplicate_signup_conflicts(client, reseller):
    response = client.post("/api/auth/signup", json={
        "name": "Again", "email": reseller["email"], "password": "hunter22",
    })
    assert response.status_code == 409


def test_wrong_password_is_rejected(client, reseller):
    assert client.post("/api/auth/login", json={"email": reseller["email"], "password": PASSWORD}).status_code == 200
    assert client.post("/api/auth/login", json={"email": reseller["email"], "password": "nope"}).status_code == 401


def test_invalid_token_is_rejected(client):
    assert client.get("/api/auth/me", headers={"Authorization": "Bearer garbage"}).status_code == 401


def test_staff_management(client, admin, admin_headers):
    created = client.post("/api/staff", headers=admin_headers, json={
        "name": "Dewi", "email": "dewi@example.com", "password": "hunter22", "position": "Warehouse",
    })
    assert created.status_code == 201
    staff_id = created.json()["id"]

    updated = client.put(f"/api/staff/{staff_id}", headers=admin_headers, json={"position": "Supervisor"})
    assert updated.json()["position"] == "Supervisor"
    assert client.put(f"/api/staff/{staff_id}", headers=admin_headers, json={"name": " "}).status_code == 400

    assert {s["name"] for s in client.get("/api/staff", headers=admin_headers).json()} == {"Admin", "Dewi"}
    assert client.delete(f"/api/staff/{admin['_id']}", headers=admin_headers).status_code == 400
    assert client.delete(f"/api/staff/{staff_id}", headers=admin_headers).status_code == 200


def test_resellers_listing(client, admin_headers, reseller):
    resellers = client.get("/api/resellers", headers=admin_headers).json()
    assert [r["email"] for r in resellers] == [reseller["email"]]
