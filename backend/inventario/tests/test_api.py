import os
from uuid import uuid4

import pytest
import requests

BASE_URL = os.getenv("TEST_API_BASE_URL", "http://127.0.0.1:8000").rstrip("/")
REQUEST_TIMEOUT = 15


def _credentials() -> tuple[str, str]:
    email = str(os.getenv("TEST_API_EMAIL") or os.getenv("ADMIN_EMAIL") or "").strip()
    password = str(os.getenv("TEST_API_PASSWORD") or os.getenv("ADMIN_PASSWORD") or "").strip()
    if not email or not password:
        pytest.skip("Credenciais de teste nao configuradas (TEST_API_EMAIL/TEST_API_PASSWORD).")
    return email, password


def get_token() -> str:
    email, password = _credentials()
    payload = {"email": email, "password": password}

    try:
        response = requests.post(f"{BASE_URL}/auth/login", json=payload, timeout=REQUEST_TIMEOUT)
    except requests.RequestException as exc:
        pytest.skip(f"API indisponivel para testes de integracao: {exc}")

    if response.status_code in {401, 403, 404}:
        pytest.skip(f"Credenciais de integracao sem acesso para testes ({response.status_code}).")

    response.raise_for_status()
    token = response.json().get("access_token")
    if not token:
        pytest.skip("Token nao retornado por /auth/login.")
    return token


def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {get_token()}"}


def has_permission(headers: dict[str, str], permission: str) -> bool:
    response = requests.get(f"{BASE_URL}/auth/me", headers=headers, timeout=REQUEST_TIMEOUT)
    if response.status_code != 200:
        return False
    payload = response.json() or {}
    role = str(payload.get("role") or "").strip().lower()
    permissions = payload.get("permissions") or []
    return role == "admin" or permission in permissions


def test_list_equipments():
    headers = auth_headers()
    if not has_permission(headers, "equipments.view"):
        pytest.skip("Usuario de integracao sem permissao equipments.view.")

    response = requests.get(f"{BASE_URL}/equipments/", headers=headers, timeout=REQUEST_TIMEOUT)
    assert response.status_code == 200
    data = response.json()
    assert isinstance(data["items"], list)
    assert data["page"]["offset"] == 0


def test_create_and_delete_equipment():
    headers = auth_headers()
    if not has_permission(headers, "equipments.manage"):
        pytest.skip("Usuario de integracao sem permissao equipments.manage.")

    serial = f"SMOKE-{uuid4().hex[:10].upper()}"
    payload = {"equipamento": "Notebook smoke test", "serial": serial, "usuario_atual": "Teste Integracao"}
    response = requests.post(f"{BASE_URL}/equipments/", json=payload, headers=headers, timeout=REQUEST_TIMEOUT)
    assert response.status_code == 201
    created = response.json()
    assert created["status"] == "Em Uso"

    duplicate = requests.post(
        f"{BASE_URL}/equipments/",
        json={"equipamento": "Outro", "serial": serial.lower()},
        headers=headers,
        timeout=REQUEST_TIMEOUT,
    )
    assert duplicate.status_code == 409

    response = requests.delete(f"{BASE_URL}/equipments/{created['id']}", headers=headers, timeout=REQUEST_TIMEOUT)
    assert response.status_code == 204


def test_import_status_and_periodic_preview():
    headers = auth_headers()
    if not has_permission(headers, "equipments.import"):
        pytest.skip("Usuario de integracao sem permissao equipments.import.")

    response = requests.get(f"{BASE_URL}/equipments/import/status", headers=headers, timeout=REQUEST_TIMEOUT)
    assert response.status_code == 200
    assert response.json()["next_tool"] in {"consolidation", "periodic"}

    csv_text = "Nome do dispositivo,Número de série,Nome do usuário atual\nSMOKE-PC,SMOKE-PREVIEW-0001,\n"
    response = requests.post(
        f"{BASE_URL}/equipments/import/periodic-update/preview",
        files={"absolute_file": ("absolute.csv", csv_text.encode("utf-8"), "text/csv")},
        headers=headers,
        timeout=REQUEST_TIMEOUT,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["total_records"] == 1


def test_read_audit_log():
    headers = auth_headers()
    if not has_permission(headers, "audit.view"):
        pytest.skip("Usuario de integracao sem permissao audit.view.")

    response = requests.get(f"{BASE_URL}/audit-log", headers=headers, timeout=REQUEST_TIMEOUT)
    assert response.status_code == 200
    assert len(response.json()) <= 500
