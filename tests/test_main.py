import io

import main
from material_backend import get_mock_data


def upload(client, content, filename="stock.csv"):
    data = {"file": (io.BytesIO(content), filename)}
    return client.post("/upload", data=data, content_type="multipart/form-data")


def test_index_shows_demo_notice(app_client):
    response = app_client.get("/")
    assert response.status_code == 200
    assert b"Quick Search" in response.data
    assert b"Demo Mode" in response.data
    assert b"Recent Activity" not in response.data


def test_search_records_history_and_shows_profile(app_client):
    response = app_client.post("/search", data={"code": "  401121145 "})
    assert response.status_code == 302

    item = main.history.items()[0]
    assert item.type == "SEARCH"
    assert item.label == "401121145"
    assert response.headers["Location"].endswith(f"/history/{item.id}")

    page = app_client.get(f"/history/{item.id}")
    assert page.status_code == 200
    assert b"Spherical Roller Bearing 22216" in page.data
    assert b"998877665" in page.data

    index = app_client.get("/")
    assert b"Recent Activity" in index.data
    assert b"Just now" in index.data


def test_search_requires_code(app_client):
    response = app_client.post("/search", data={"code": "   "}, follow_redirects=True)
    assert b"Enter a material code" in response.data
    assert main.history.items() == []


def test_upload_runs_bulk_analysis(app_client):
    response = upload(app_client, b"Material Code,Desc\n111,x\n222,y\n333,z\n444,w\n")
    assert response.status_code == 302

    item = main.history.items()[0]
    assert item.type == "BULK"
    assert item.label == "stock.csv"
    assert [p["materialCode"] for p in item.profiles] == ["111", "222", "333"]

    page = app_client.get(f"/history/{item.id}")
    assert b"3 of 3 materials" in page.data


def test_bulk_page_filters(app_client):
    upload(app_client, b"111\n222\n333\n")
    item = main.history.items()[0]

    page = app_client.get(f"/history/{item.id}?criticality=A")
    assert b"1 of 3 materials" in page.data
    assert b"Hydraulic" in page.data


def test_upload_rejects_wrong_extension(app_client):
    response = upload(app_client, b"111\n", filename="stock.xlsx")
    response = app_client.get("/")
    assert b"Only .csv and .txt files are supported." in response.data
    assert main.history.items() == []


def test_upload_rejects_missing_file(app_client):
    response = app_client.post("/upload", data={}, follow_redirects=True)
    assert b"Choose a CSV or text file" in response.data


def test_upload_rejects_file_without_codes(app_client):
    upload(app_client, b"Material Code\n\n")
    response = app_client.get("/")
    assert b"No material codes found" in response.data


def test_upload_rejects_binary_file(app_client):
    upload(app_client, b"\xff\xfe\x00\x81", filename="stock.txt")
    response = app_client.get("/")
    assert b"not valid UTF-8" in response.data


def test_unknown_history_item_is_404(app_client):
    assert app_client.get("/history/missing").status_code == 404
    assert app_client.get("/history/missing/report").status_code == 404


def test_download_report(app_client, tmp_path):
    upload(app_client, b"111\n222\n")
    item = main.history.items()[0]

    response = app_client.get(f"/history/{item.id}/report")
    assert response.status_code == 200
    assert "attachment" in response.headers["Content-Disposition"]
    assert "material_analysis_stock_csv.xlsx" in response.headers["Content-Disposition"]
    assert response.data[:2] == b"PK"
    # Built in memory, nothing left on disk
    assert not any(p.suffix == ".xlsx" for p in tmp_path.rglob("*"))


def test_chart_is_named_per_history_item(app_client):
    app_client.post("/search", data={"code": "401121145"})
    first = main.history.items()[0]
    app_client.post("/search", data={"code": "401121145"})
    second = main.history.items()[0]

    for item in (first, second):
        page = app_client.get(f"/history/{item.id}")
        assert f"/charts/{item.id}.png".encode() in page.data

        response = app_client.get(f"/charts/{item.id}.png")
        assert response.status_code == 200
        assert response.data[:4] == b"\x89PNG"


def test_api_material(app_client):
    response = app_client.get("/api/materials/401121145")
    assert response.status_code == 200
    assert response.get_json() == get_mock_data("401121145")


def test_api_material_rejects_blank_code(app_client):
    response = app_client.get("/api/materials/%20%20")
    assert response.status_code == 400
    assert "error" in response.get_json()



def test_api_bulk(app_client):
    response = app_client.post("/api/materials/bulk", json={"codes": ["a", " ", "b"]})
    assert response.status_code == 200
    assert [p["materialCode"] for p in response.get_json()] == ["a", "b"]


def test_api_bulk_rejects_bad_payload(app_client):
    assert app_client.post("/api/materials/bulk", json={"codes": "a"}).status_code == 400
    assert app_client.post("/api/materials/bulk", json=[1, 2]).status_code == 400
    assert app_client.post("/api/materials/bulk", data="nope").status_code == 400
