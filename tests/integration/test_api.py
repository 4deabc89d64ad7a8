"""Integration tests for picbatch.api.main — FastAPI REST API endpoints.

All tests use the FastAPI TestClient against an application built with a
temporary configuration, so records and uploads live in a temp directory.
Tests cover every endpoint:

- ``GET /api/categories`` — Category listing.
- ``GET /api/categories/{id}[/{limit}]`` — Random picture batches.
- ``POST /api/categories`` — Category creation.
- ``DELETE /api/categories/{id}`` — Cascade delete.
- ``POST /api/pictures`` — Picture creation.
- ``POST /api/pictures/{id}`` — Picture update.
- ``DELETE /api/pictures/{id}`` — Picture delete.
- ``POST /api/maintenance/reconcile`` — Orphan sweep.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from picbatch.api.main import create_app
from picbatch.core.config import PicbatchConfig

PNG = b"\x89PNG\r\n\x1a\nfake"


@pytest.fixture
def app(test_config: PicbatchConfig):
    return create_app(test_config)


@pytest.fixture
def test_client(app) -> TestClient:
    with TestClient(app) as client:
        yield client


def _image(name: str = "photo.png", content: bytes = PNG) -> dict:
    return {"image": (name, content, "image/png")}


@pytest.fixture
def category_id(test_client: TestClient) -> str:
    resp = test_client.post("/api/categories", data={"title": "Cats"}, files=_image("cover.jpg"))
    assert resp.status_code == 200
    return resp.json()["_id"]


@pytest.fixture
def picture_ids(test_client: TestClient, category_id: str) -> list[str]:
    ids = []
    for i in range(5):
        resp = test_client.post(
            "/api/pictures",
            data={"categoryId": category_id, "matches": f"Cat, Animal{i}"},
            files=_image(f"p{i}.png"),
        )
        assert resp.status_code == 200
        ids.append(resp.json()["_id"])
    return ids


# ---------------------------------------------------------------------------
# Category endpoints.
# ---------------------------------------------------------------------------


class TestCreateCategory:
    def test_create_returns_record(self, test_client, test_config):
        resp = test_client.post("/api/categories", data={"title": "Dogs"}, files=_image("d.JPG"))
        assert resp.status_code == 200
        data = resp.json()
        assert data["title"] == "Dogs"
        assert data["imageUrl"].startswith("/uploads/")
        assert data["imageUrl"].endswith(".jpg")
        assert "dateAdded" in data

    def test_image_is_served(self, test_client):
        resp = test_client.post("/api/categories", data={"title": "Dogs"}, files=_image())
        image = test_client.get(resp.json()["imageUrl"])
        assert image.status_code == 200
        assert image.content == PNG

    def test_missing_image(self, test_client):
        resp = test_client.post("/api/categories", data={"title": "Dogs"})
        assert resp.status_code == 400
        assert "image" in resp.json()["error"]

    def test_unknown_file_type(self, test_client):
        resp = test_client.post(
            "/api/categories", data={"title": "Dogs"}, files=_image("noextension")
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "Unknown file type!"

    def test_listed(self, test_client, category_id):
        resp = test_client.get("/api/categories")
        assert resp.status_code == 200
        assert [c["_id"] for c in resp.json()["categories"]] == [category_id]


class TestSampleBatch:
    def test_batch_with_limit(self, test_client, category_id, picture_ids):
        resp = test_client.get(f"/api/categories/{category_id}/3")
        assert resp.status_code == 200
        pictures = resp.json()["pictures"]
        assert len(pictures) == 3
        assert len({p["_id"] for p in pictures}) == 3
        assert all(p["categoryId"] == category_id for p in pictures)

    def test_small_category_returned_whole(self, test_client, category_id, picture_ids):
        resp = test_client.get(f"/api/categories/{category_id}/50")
        assert {p["_id"] for p in resp.json()["pictures"]} == set(picture_ids)

    def test_default_limit(self, test_client, category_id, picture_ids):
        resp = test_client.get(f"/api/categories/{category_id}")
        assert resp.status_code == 200
        assert len(resp.json()["pictures"]) == 5

    def test_unknown_category_is_empty(self, test_client):
        resp = test_client.get("/api/categories/missing/10")
        assert resp.status_code == 200
        assert resp.json() == {"pictures": []}

    def test_zero_limit_is_empty(self, test_client, category_id, picture_ids):
        resp = test_client.get(f"/api/categories/{category_id}/0")
        assert resp.json() == {"pictures": []}

    def test_non_numeric_limit_rejected(self, test_client, category_id):
        resp = test_client.get(f"/api/categories/{category_id}/many")
        assert resp.status_code == 422


class TestDeleteCategory:
    def test_cascade(self, test_client, app, category_id, picture_ids):
        resp = test_client.delete(f"/api/categories/{category_id}")
        assert resp.status_code == 200
        data = resp.json()
        assert data["message"] == "Success!"
        assert all(step["ok"] for step in data["steps"])

        records = app.state.records
        assert records.pictures.find_many({"category_id": category_id}) == []
        assert app.state.blobs.count() == 0
        assert test_client.get("/api/categories").json()["categories"] == []

    def test_unknown_category(self, test_client):
        resp = test_client.delete("/api/categories/missing")
        assert resp.status_code == 200

    def test_missing_blob_reports_steps(self, test_client, app, category_id, picture_ids):
        picture = app.state.records.pictures.find_by_id(picture_ids[0])
        app.state.blobs.path_for(picture.image_url).unlink()

        resp = test_client.delete(f"/api/categories/{category_id}")

        assert resp.status_code == 500
        failed = [s for s in resp.json()["steps"] if not s["ok"]]
        assert [s["step"] for s in failed] == [f"picture:{picture.id}:blob"]


# ---------------------------------------------------------------------------
# Picture endpoints.
# ---------------------------------------------------------------------------


class TestCreatePicture:
    def test_create(self, test_client, category_id):
        resp = test_client.post(
            "/api/pictures",
            data={"categoryId": category_id, "matches": "DOG, Pet ,cat"},
            files=_image(),
        )
        assert resp.status_code == 200
        assert resp.json()["matches"] == ["dog", "pet", "cat"]

    def test_unknown_category(self, test_client, app):
        before = app.state.blobs.count()
        resp = test_client.post(
            "/api/pictures",
            data={"categoryId": "missing", "matches": "cat"},
            files=_image(),
        )
        assert resp.status_code == 400
        assert app.state.blobs.count() == before

    def test_missing_matches(self, test_client, category_id):
        resp = test_client.post("/api/pictures", data={"categoryId": category_id}, files=_image())
        assert resp.status_code == 400
        assert "matches" in resp.json()["error"]

    def test_missing_image(self, test_client, category_id):
        resp = test_client.post("/api/pictures", data={"categoryId": category_id, "matches": "cat"})
        assert resp.status_code == 400

    def test_unknown_file_type(self, test_client, category_id):
        resp = test_client.post(
            "/api/pictures",
            data={"categoryId": category_id, "matches": "cat"},
            files=_image("picture"),
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "Unknown file type!"


class TestUpdatePicture:
    def test_update_matches(self, test_client, picture_ids):
        resp = test_client.post(f"/api/pictures/{picture_ids[0]}", data={"matches": "DOG, Pet ,cat"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["message"] == "Successfully updated!"
        assert data["picture"]["matches"] == ["dog", "pet", "cat"]

    def test_update_image(self, test_client, app, picture_ids):
        old = app.state.records.pictures.find_by_id(picture_ids[0])

        resp = test_client.post(
            f"/api/pictures/{picture_ids[0]}",
            data={"matches": "dog"},
            files=_image("new.gif", b"GIF89a"),
        )

        assert resp.status_code == 200
        new_url = resp.json()["picture"]["imageUrl"]
        assert new_url.endswith(".gif")
        assert new_url != old.image_url
        assert test_client.get(new_url).content == b"GIF89a"

    def test_missing_matches(self, test_client, picture_ids):
        resp = test_client.post(f"/api/pictures/{picture_ids[0]}", data={})
        assert resp.status_code == 400
        assert resp.json()["error"] == "Missing field `matches`!"

    def test_unknown_picture(self, test_client):
        resp = test_client.post("/api/pictures/missing", data={"matches": "cat"})
        assert resp.status_code == 404


class TestDeletePicture:
    def test_delete(self, test_client, app, picture_ids):
        resp = test_client.delete(f"/api/pictures/{picture_ids[0]}")
        assert resp.status_code == 200
        assert resp.json()["message"] == "success"
        assert app.state.records.pictures.find_by_id(picture_ids[0]) is None

    def test_delete_unknown(self, test_client):
        resp = test_client.delete("/api/pictures/missing")
        assert resp.status_code == 200


# ---------------------------------------------------------------------------
# Maintenance endpoint.
# ---------------------------------------------------------------------------


class TestReconcile:
    def test_sweeps_deleted_picture_blob(self, test_client, app, picture_ids):
        picture = app.state.records.pictures.find_by_id(picture_ids[0])
        test_client.delete(f"/api/pictures/{picture.id}")

        resp = test_client.post("/api/maintenance/reconcile", json={"grace_seconds": 0})

        assert resp.status_code == 200
        data = resp.json()
        assert data["deleted"] == [picture.image_url.rsplit("/", 1)[1]]
        assert data["referenced"] == 5

    def test_dry_run(self, test_client, app, picture_ids):
        test_client.delete(f"/api/pictures/{picture_ids[0]}")

        resp = test_client.post(
            "/api/maintenance/reconcile", json={"grace_seconds": 0, "dry_run": True}
        )

        assert len(resp.json()["orphaned"]) == 1
        assert resp.json()["deleted"] == []


# ---------------------------------------------------------------------------
# Server entry point.
# ---------------------------------------------------------------------------


class TestMain:
    def test_no_app_built_at_import(self):
        import picbatch.api.main as main_module

        assert not hasattr(main_module, "app")

    def test_main_runs_factory(self, monkeypatch):
        import uvicorn

        from picbatch.api.main import main

        calls = []
        monkeypatch.setattr(uvicorn, "run", lambda target, **kwargs: calls.append((target, kwargs)))

        main()

        ((target, kwargs),) = calls
        assert target == "picbatch.api.main:create_app"
        assert kwargs["factory"] is True
