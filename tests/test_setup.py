"""
tests/test_setup.py -- First-run admin creation via POST /api/v1/auth/setup.

Uses its own empty stores; the shared api_client already has an admin.
"""

from __future__ import annotations

import uuid

from fastapi.testclient import TestClient

from api.main import app
from conftest import _make_test_stores, _patch_lifespan, bearer


def test_setup_creates_first_admin_once() -> None:
    auth_store, catalog = _make_test_stores(f"setup_{uuid.uuid4().hex}")
    app.router.lifespan_context = _patch_lifespan(auth_store, catalog)
    body = {"username": "root", "password": "rootpass123", "email": "root@example.com"}

    with TestClient(app) as client:
        resp = client.post("/api/v1/auth/setup", json=body)
        assert resp.status_code == 201, resp.text

        login = client.post("/api/v1/auth/login", json={"username": "root", "password": "rootpass123"})
        assert login.status_code == 200
        assert login.json()["role"] == "admin"
        assert client.get("/api/v1/users", headers=bearer(login.json()["access_token"])).status_code == 200

        again = client.post(
            "/api/v1/auth/setup",
            json={"username": "root2", "password": "rootpass123", "email": "root2@example.com"},
        )
        assert again.status_code == 409

    auth_store.close()
    catalog.close()
