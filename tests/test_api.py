from fastapi.testclient import TestClient

from dj1948.main import app

client = TestClient(app)

REGIME = {"tax_regime": "14A", "corporate_tax_rate": "0.27", "fiscal_year": 2024}


def _filing(**kw):
    body = {
        "profile": {"rut": "76.123.456-7", "first_name": "Ana", "last_name": "Pérez", "email": "ana@andes.cl"},
        "fiscal_year_label": "2024",
        "qualifications": [
            {
                "id": "q1",
                "amount": {"value": "1000000"},
                "factors": {"factor8": "0.5"},
                "period": "2024-Q3",
                "regime": REGIME,
            }
        ],
    }
    body.update(kw)
    return body


def test_health():
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_credits_endpoint():
    r = client.post("/dj1948/credits", json={"regime": REGIME, "amounts": {"c5": 500000}})
    assert r.status_code == 200
    assert r.json()["credits"]["c19"] == 184932


def test_credits_endpoint_rejects_bad_rate():
    r = client.post("/dj1948/credits", json={"regime": {**REGIME, "corporate_tax_rate": "1"}})
    assert r.status_code == 400


def test_rows_endpoint():
    r = client.post("/dj1948/rows", json=_filing())
    assert r.status_code == 200
    body = r.json()
    row = body["rows"][0]
    assert row["c1"] == "30.09.2024"
    assert row["c5"] == 500000
    assert row["c8"] == 500000
    assert row["c19"] == 184932
    assert body["totals"]["row_count"] == 1
    assert body["warnings"] == []


def test_invalid_regime_policy():
    quals = [{"id": "bad", "amount": {"value": "10"}, "regime": {**REGIME, "tax_regime": None}}]
    r = client.post("/dj1948/rows", json=_filing(qualifications=quals))
    assert r.status_code == 200
    assert len(r.json()["warnings"]) == 1

    r = client.post("/dj1948/rows", json=_filing(qualifications=quals, on_invalid_regime="propagate"))
    assert r.status_code == 400


def test_csv_endpoint():
    r = client.post("/dj1948/csv", json=_filing())
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/csv")
    assert 'filename="DJ1948_761234567_2024_' in r.headers["content-disposition"]
    text = r.content.decode("utf-8")
    assert len(text.split("\r\n")) == 52


def test_csv_endpoint_requires_declarant_rut():
    r = client.post("/dj1948/csv", json=_filing(profile={"first_name": "Ana"}))
    assert r.status_code == 400


def test_xlsx_endpoint():
    r = client.post("/dj1948/xlsx", json=_filing(qualifications=[]))
    assert r.status_code == 200
    assert r.content[:2] == b"PK"
    assert r.headers["x-document-version"].startswith("dj1948_2024_")


def test_taxpayers_endpoint():
    quals = [
        {"id": "a", "amount": {"value": "10"}, "taxpayer_rut": "11.111.111-1"},
        {"id": "b", "amount": {"value": "20"}, "taxpayer_rut": "111111111"},
        {"id": "c", "amount": {"value": "30"}, "taxpayer_rut": "22.222.222-2"},
    ]
    r = client.post("/dj1948/taxpayers", json={"qualifications": quals})
    assert r.status_code == 200
    body = r.json()
    assert body["count"] == 2
    assert body["items"][0] == {"rut": "11.111.111-1", "rut_clean": "111111111", "count": 2}


def test_malformed_quarter_year_still_exports():
    quals = [{"id": "q", "amount": {"value": "100"}, "period": "0000-Q1"}]
    r = client.post("/dj1948/csv", json=_filing(qualifications=quals))
    assert r.status_code == 200
