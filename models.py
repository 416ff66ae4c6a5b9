from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from conciliacao.registros import coerce_amount, parse_timestamp

# Porcentagem padrão da plataforma em novos mikrotiks
PORCENTAGEM_PADRAO = 10.0


def _money(value) -> float:
    amount, _ = coerce_amount(value)
    return amount or 0.0


@dataclass
class Account:
    """Linha da tabela "users"."""
    id: str
    display_name: str
    email: str
    role: str = "user"  # admin | user
    balance: float = 0.0  # saldo
    auto_withdraw_enabled: bool = False  # saque_automatico
    pix_key: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @classmethod
    def from_row(cls, row: Dict) -> "Account":
        return cls(
            id=str(row.get("id")),
            display_name=row.get("nome") or row.get("email") or "Usuário",
            email=row.get("email") or "",
            role="admin" if row.get("role") == "admin" else "user",
            balance=_money(row.get("saldo")),
            auto_withdraw_enabled=bool(row.get("saque_automatico")),
            pix_key=row.get("chave_pix") or row.get("pix_key"),
            created_at=parse_timestamp(row.get("created_at")),
            updated_at=parse_timestamp(row.get("updated_at")),
        )


@dataclass
class Device:
    """Linha da tabela "mikrotiks". Conexão (ip/usuário/senha) fica fora da conciliação."""
    id: str
    owner_id: Optional[str]
    name: str
    commission_percentage: float = PORCENTAGEM_PADRAO  # parte da plataforma em novas vendas PIX
    active: bool = True

    @classmethod
    def from_row(cls, row: Dict) -> "Device":
        pct, _ = coerce_amount(row.get("porcentagem"))
        return cls(
            id=str(row.get("id")),
            owner_id=str(row["user_id"]) if row.get("user_id") else None,
            name=row.get("nome") or "MikroTik",
            commission_percentage=PORCENTAGEM_PADRAO if pct is None else pct,
            active=bool(row.get("ativo", True)),
        )


@dataclass
class Subscription:
    """Linha de "user_subscriptions" com o plano embutido (subscription_plans)."""
    id: str
    account_id: str
    plan_id: str
    plan_name: str
    starts_at: Optional[datetime]
    expires_at: Optional[datetime]
    status: str  # active | expired | cancelled
    plan_price: Optional[float] = None

    def is_active(self, now: datetime) -> bool:
        return self.status == "active" and self.expires_at is not None and self.expires_at > now

    def days_remaining(self, now: datetime) -> int:
        if not self.is_active(now):
            return 0
        return max(0, math.ceil((self.expires_at - now).total_seconds() / 86400))

    @property
    def is_trial(self) -> bool:
        name = (self.plan_name or "").lower()
        return any(k in name for k in ("trial", "teste", "grátis")) or self.plan_price == 0

    @classmethod
    def from_row(cls, row: Dict) -> "Subscription":
        plan = row.get("subscription_plans") or {}
        return cls(
            id=str(row.get("id")),
            account_id=str(row.get("user_id")),
            plan_id=str(row.get("plan_id")),
            plan_name=plan.get("name") or "",
            starts_at=parse_timestamp(row.get("starts_at")),
            expires_at=parse_timestamp(row.get("expires_at")),
            status=row.get("status") or "expired",
            plan_price=coerce_amount(plan.get("price"))[0],
        )


@dataclass
class Withdrawal:
    """Linha da tabela "saques"."""
    id: str
    account_id: str
    amount: float
    status: str  # pendente | aprovado | rejeitado
    pix_key: Optional[str] = None
    requested_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict) -> "Withdrawal":
        return cls(
            id=str(row.get("id")),
            account_id=str(row.get("user_id")),
            amount=_money(row.get("valor")),
            status=row.get("status") or "pendente",
            pix_key=row.get("pix_key"),
            requested_at=parse_timestamp(row.get("data_solicitacao") or row.get("created_at")),
        )
