from __future__ import annotations

from app.main import app
from app.services.companies import CompanyDataset, get_company_dataset


def _use_dataset(path) -> None:
    dataset = CompanyDataset(path)
    app.dependency_overrides[get_company_dataset] = lambda: dataset


def test_similarity_ranks_companies(client, companies_file):
    _use_dataset(companies_file)

    response = client.get("/api/similarity", params={"companyId": "atlas-humanoids"})

    assert response.status_code == 200
    assert response.headers["cache-control"].startswith("public, s-maxage=3600")
    body = response.json()
    data = body["data"]
    assert data["sourceCompany"] == {"id": "atlas-humanoids", "name": "Atlas Humanoids"}
    assert [entry["id"] for entry in data["similar"]] == ["biped-works", "quad-dynamics"]
    assert data["similar"][0]["similarity"] == 0.75
    assert data["similar"][0]["sharedTraits"]
    assert body["_meta"]["source"] == "Similarity Engine"


def test_similarity_accepts_company_name_and_limit(client, companies_file):
    _use_dataset(companies_file)

    response = client.get("/api/similarity", params={"companyId": "Atlas Humanoids", "limit": 1})

    assert response.status_code == 200
    assert len(response.json()["data"]["similar"]) == 1


def test_missing_company_id_is_bad_request(client, companies_file):
    _use_dataset(companies_file)

    response = client.get("/api/similarity")

    assert response.status_code == 400
    assert response.json() == {"ok": False, "error": "Missing companyId parameter"}


def test_unknown_company_is_not_found(client, companies_file):
    _use_dataset(companies_file)

    response = client.get("/api/similarity", params={"companyId": "nobody"})

    assert response.status_code == 404
    assert response.json()["details"] == {"companyId": "nobody"}


def test_invalid_limit_is_bad_request(client, companies_file):
    _use_dataset(companies_file)

    response = client.get("/api/similarity", params={"companyId": "atlas-humanoids", "limit": 0})

    assert response.status_code == 400


def test_unreadable_dataset_is_server_error(client, tmp_path):
    _use_dataset(tmp_path / "missing.json")

    response = client.get("/api/similarity", params={"companyId": "atlas-humanoids"})

    assert response.status_code == 500
    assert response.json()["error"] == "Failed to compute similarity"
