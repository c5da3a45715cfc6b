def test_list_items_for_current_department(client):
    r = client.get("/api/v1/catalogue/items")
    assert r.status_code == 200
    ids = {i["id"] for i in r.json()["items"]}
    assert {"p-soap", "s-repair", "d-1gb"} <= ids


def test_filter_by_kind_and_other_department(client):
    items = client.get("/api/v1/catalogue/items", params={"kind": "service"}).json()["items"]
    assert [i["id"] for i in items] == ["s-repair"]

    other = client.get("/api/v1/catalogue/items", headers={"X-Department-Id": "dept-2"}).json()["items"]
    assert other == []


def test_list_variants(client):
    variants = client.get("/api/v1/catalogue/items/p-shirt/variants").json()["variants"]
    assert sorted(v["name"] for v in variants) == ["S", "XL"]
