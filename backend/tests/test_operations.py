from fastapi.testclient import TestClient


def _create(client: TestClient, headers, **fields) -> int:
    data = {"date": "2024-01-01", "type": "in", "amount": "100"}
    data.update(fields)
    res = client.post("/api/operations", data=data, headers=headers)
    assert res.status_code == 201, res.text
    return res.json()["id"]


def test_create_and_list_operation(client: TestClient, headers_for) -> None:
    entry = headers_for("entry")
    op_id = _create(
        client,
        entry,
        date="2024-03-05",
        type="out",
        amount="250.5",
        property_type="سكني",
        reference_number="INV-1",
        category="صيانة",
        description="pump repair",
    )

    res = client.get("/api/operations", headers=entry)
    assert res.status_code == 200
    rows = res.json()
    assert len(rows) == 1
    row = rows[0]
    assert row["id"] == op_id
    assert row["type"] == "out"
    assert row["amount"] == 250.5
    assert row["category"] == "صيانة"
    assert row["created_by_name"] == "Entry User"
    assert row["attachment_path"] is None


def test_empty_amount_is_zero(client: TestClient, admin_headers) -> None:
    _create(client, admin_headers, amount="")
    rows = client.get("/api/operations", headers=admin_headers).json()
    assert rows[0]["amount"] == 0


def test_invalid_amount_is_rejected(client: TestClient, admin_headers) -> None:
    for amount in ("abc", "-5", "NaN", "Infinity"):
        res = client.post(
            "/api/operations",
            data={"date": "2024-01-01", "type": "in", "amount": amount},
            headers=admin_headers,
        )
        assert res.status_code == 400, amount
        assert res.json()["error"]["details"][0]["field"] == "amount"


def test_required_fields(client: TestClient, admin_headers) -> None:
    res = client.post("/api/operations", data={"type": "in", "amount": "1"}, headers=admin_headers)
    assert res.status_code == 400
    assert res.json()["error"]["details"][0]["field"] == "date"

    res = client.post("/api/operations", data={"date": "2024-01-01", "type": "sideways"}, headers=admin_headers)
    assert res.status_code == 400
    assert res.json()["error"]["details"][0]["field"] == "type"

    res = client.post("/api/operations", data={"date": "01/02/2024", "type": "in"}, headers=admin_headers)
    assert res.status_code == 400


def test_list_filters(client: TestClient, admin_headers) -> None:
    _create(client, admin_headers, reference_number="REF-100", category="إيجار", property_type="تجاري")
    _create(client, admin_headers, description="electricity bill", category="فواتير", property_type="سكني")
    _create(client, admin_headers, description="misc", category="فواتير", property_type="تجاري")

    def count(**params) -> int:
        return len(client.get("/api/operations", params=params, headers=admin_headers).json())

    assert count() == 3
    assert count(q="REF-1") == 1
    assert count(q="electricity") == 1
    assert count(category="فواتير") == 2
    assert count(property_type="تجاري") == 2
    assert count(category="فواتير", property_type="تجاري") == 1
    assert count(q="nothing-matches") == 0


def test_list_is_newest_business_date_first(client: TestClient, admin_headers) -> None:
    first = _create(client, admin_headers, date="2024-01-01")
    second = _create(client, admin_headers, date="2024-02-01")
    third = _create(client, admin_headers, date="2024-01-01")
    rows = client.get("/api/operations", headers=admin_headers).json()
    assert [row["id"] for row in rows] == [second, third, first]


def test_update_replaces_fields_and_keeps_date_and_type(client: TestClient, admin_headers) -> None:
    op_id = _create(
        client,
        admin_headers,
        date="2024-05-01",
        type="out",
        amount="80",
        category="صيانة",
        description="old",
    )
    res = client.put(f"/api/operations/{op_id}", data={"amount": "95", "description": "new"}, headers=admin_headers)
    assert res.status_code == 200

    row = client.get("/api/operations", headers=admin_headers).json()[0]
    assert row["date"] == "2024-05-01"
    assert row["type"] == "out"
    assert row["amount"] == 95
    assert row["description"] == "new"
    # full-row update: omitted optional fields are cleared
    assert row["category"] is None


def test_update_missing_operation(client: TestClient, admin_headers) -> None:
    res = client.put("/api/operations/9999", data={"amount": "1"}, headers=admin_headers)
    assert res.status_code == 404
    assert res.json()["error"]["code"] == "NOT_FOUND"


def test_update_and_delete_are_admin_only(client: TestClient, admin_headers, headers_for) -> None:
    op_id = _create(client, admin_headers)
    entry = headers_for("entry")
    assert client.put(f"/api/operations/{op_id}", data={"amount": "1"}, headers=entry).status_code == 403
    assert client.delete(f"/api/operations/{op_id}", headers=entry).status_code == 403

    assert client.delete(f"/api/operations/{op_id}", headers=admin_headers).status_code == 200
    assert client.get("/api/operations", headers=admin_headers).json() == []


def test_attachment_is_stored_and_served(client: TestClient, admin_headers, settings) -> None:
    res = client.post(
        "/api/operations",
        data={"date": "2024-01-01", "type": "out", "amount": "10"},
        files={"attachment": ("receipt.PDF", b"%PDF-1.4 test", "application/pdf")},
        headers=admin_headers,
    )
    assert res.status_code == 201, res.text

    path = client.get("/api/operations", headers=admin_headers).json()[0]["attachment_path"]
    assert path.startswith("/uploads/")
    assert path.endswith(".pdf")
    stored = settings.uploads_dir / path.rsplit("/", 1)[1]
    assert stored.read_bytes() == b"%PDF-1.4 test"

    served = client.get(path)
    assert served.status_code == 200
    assert served.content == b"%PDF-1.4 test"


def test_update_keeps_attachment_unless_replaced(client: TestClient, admin_headers) -> None:
    client.post(
        "/api/operations",
        data={"date": "2024-01-01", "type": "out", "amount": "10"},
        files={"attachment": ("scan.png", b"png-bytes", "image/png")},
        headers=admin_headers,
    )
    row = client.get("/api/operations", headers=admin_headers).json()[0]
    first_path = row["attachment_path"]

    client.put(f"/api/operations/{row['id']}", data={"amount": "11"}, headers=admin_headers)
    assert client.get("/api/operations", headers=admin_headers).json()[0]["attachment_path"] == first_path

    client.put(
        f"/api/operations/{row['id']}",
        data={"amount": "12"},
        files={"attachment": ("scan2.jpg", b"jpg-bytes", "image/jpeg")},
        headers=admin_headers,
    )
    replaced = client.get("/api/operations", headers=admin_headers).json()[0]["attachment_path"]
    assert replaced != first_path
    assert replaced.endswith(".jpg")


def test_disallowed_attachment_type(client: TestClient, admin_headers) -> None:
    res = client.post(
        "/api/operations",
        data={"date": "2024-01-01", "type": "out", "amount": "10"},
        files={"attachment": ("run.exe", b"MZ", "application/octet-stream")},
        headers=admin_headers,
    )
    assert res.status_code == 400
    assert res.json()["error"]["details"][0]["field"] == "attachment"
    assert client.get("/api/operations", headers=admin_headers).json() == []


def test_search_treats_wildcards_literally(client: TestClient, admin_headers) -> None:
    _create(client, admin_headers, reference_number="100%")
    _create(client, admin_headers, reference_number="1000")
    _create(client, admin_headers, description="a_b")
    _create(client, admin_headers, description="axb")

    def refs(q: str) -> list:
        rows = client.get("/api/operations", params={"q": q}, headers=admin_headers).json()
        return sorted((row["reference_number"] or row["description"]) for row in rows)

    assert refs("100%") == ["100%"]
    assert refs("a_b") == ["a_b"]
    assert refs("%") == ["100%"]
    assert refs("_") == ["a_b"]
