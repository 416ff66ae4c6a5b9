# services/backend_api.py
"""
Cliente do backend MikroPix (api.mikropix.online): pagamentos PIX, saques
e o controlador WireGuard. Autenticação por Bearer com o token do Supabase.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import requests

logger = logging.getLogger(__name__)


class BackendAPIError(Exception):
    """Falha ao chamar o backend MikroPix."""

    def __init__(self, message: str, status_code: Optional[int] = None, payload: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class MikropixAPI:
    def __init__(self, base_url: str, token: Optional[str] = None, timeout: float = 15,
                 session: Optional[requests.Session] = None):
        self.base_url = (base_url or "").rstrip("/")
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()

    def _request(self, method: str, path: str, json: Optional[Dict] = None) -> Any:
        url = f"{self.base_url}{path}"
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            response = self.session.request(method, url, json=json, headers=headers, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error("BACKEND_API: %s %s falhou: %s", method, path, e)
            raise BackendAPIError(f"Backend indisponível: {e}") from e

        if not response.ok:
            try:
                payload = response.json()
            except ValueError:
                payload = response.text
            logger.warning("BACKEND_API: %s %s -> %s", method, path, response.status_code)
            raise BackendAPIError(
                f"API Error: {response.status_code} {response.reason}",
                status_code=response.status_code,
                payload=payload,
            )

        if not response.content:
            return {}
        return response.json()

    # ---------------- pagamentos ----------------
    def create_payment(self, plan_id: str) -> Dict:
        """POST /payments -> {paymentId, qrCode, pixCode, amount, expiresAt}"""
        if not plan_id:
            raise BackendAPIError("planId obrigatório", status_code=400)
        data = self._request("POST", "/payments", {"planId": plan_id})
        missing = [k for k in ("paymentId", "pixCode", "amount") if k not in data]
        if missing:
            raise BackendAPIError(f"Resposta de pagamento incompleta: {missing}", payload=data)
        return data

    # ---------------- saques ----------------
    def request_withdrawal(self, amount: float, pix_key: str) -> Dict:
        body = {"valor": round(float(amount), 2), "metodo_pagamento": "pix", "chave_pix": pix_key}
        return self._request("POST", "/withdrawals", body)

    def approve_withdrawal(self, withdrawal_id: str, note: str = "Aprovado pelo admin") -> Dict:
        return self._request("PATCH", f"/withdrawals/{withdrawal_id}/approve", {"observacoes_admin": note})

    def reject_withdrawal(self, withdrawal_id: str, note: str = "Rejeitado pelo admin") -> Dict:
        return self._request("PATCH", f"/withdrawals/{withdrawal_id}/reject", {"observacoes_admin": note})

    # ---------------- WireGuard ----------------
    def list_peers(self) -> Any:
        return self._request("GET", "/vpn/peers")

    def create_peer(self, name: str, device_id: Optional[str] = None) -> Dict:
        body = {"name": name}
        if device_id:
            body["mikrotikId"] = device_id
        return self._request("POST", "/vpn/peers", body)

    def delete_peer(self, public_key: str) -> Dict:
        return self._request("DELETE", f"/vpn/peers/{quote(public_key, safe='')}")

    def interface(self) -> Dict:
        return self._request("GET", "/vpn/interface")

    def stats(self) -> Dict:
        return self._request("GET", "/vpn/stats")


def api_from_app(app_config, token: Optional[str] = None) -> MikropixAPI:
    return MikropixAPI(
        app_config.get("MIKROPIX_API_URL"),
        token=token,
        timeout=app_config.get("MIKROPIX_API_TIMEOUT", 15),
    )
