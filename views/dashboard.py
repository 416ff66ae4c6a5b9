# dashboard.py
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Dict, List

from dateutil import parser as date_parser
from flask import Blueprint, current_app, request, jsonify, Response

from cache_manager import cached_by_user
from conciliacao import ReportWindow, RollupService, export_sales_csv, export_sales_xlsx, source_tables
from conciliacao.agregador import operational_zone
from data_utils.safe_pagination import safe_paginated_query
from models import Device, Subscription
from security_middleware import (
    SecurityError,
    get_current_user_id,
    get_current_role,
    log_data_access,
    restrict_to_owned_devices,
)
from supabase_client import get_supabase_client
from utils import login_required

dash_bp = Blueprint("dashboard", __name__, url_prefix="/dashboard")


class WindowError(ValueError):
    pass


def _now() -> datetime:
    return datetime.now(operational_zone(current_app.config.get("FUSO_OPERACIONAL")))


def _get_supabase():
    client = get_supabase_client()
    if client is None:
        current_app.logger.error("DASHBOARD: Cliente Supabase não disponível")
    return client


# =============== diretórios (cacheados por usuário) ===============
@cached_by_user('mikrotiks_acessiveis')
def _mikrotiks_acessiveis(role: str) -> List[Device]:
    """
    Admin enxerga todos os mikrotiks; usuário só os próprios.
    FAIL-CLOSED: sem user_id na sessão, nenhuma linha.
    """
    uid = get_current_user_id()
    if not uid:
        current_app.logger.error("DASHBOARD: Sem user_id na sessão - negando acesso aos dados")
        return []

    filters = {} if role == "admin" else {"user_id": uid}
    rows = safe_paginated_query(_get_supabase(), "mikrotiks", "id, user_id, nome, porcentagem, ativo",
                                filters=filters)
    log_data_access("mikrotiks", "SELECT", uid, len(rows))
    return [Device.from_row(r) for r in rows]


@cached_by_user('diretorio_contas')
def _nomes_contas() -> Dict[str, str]:
    rows = safe_paginated_query(_get_supabase(), "users", "id, nome, email")
    return {str(r["id"]): r.get("nome") or r.get("email") or str(r["id"]) for r in rows}


# =============== janela ===============
def _parse_bound(value: str, zone) -> datetime:
    try:
        moment = date_parser.isoparse(value)
    except (ValueError, OverflowError) as e:
        raise WindowError(f"Data inválida: {value}") from e
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=zone)
    return moment


def _window_from_request(now: datetime) -> ReportWindow:
    """
    ?inicio=&fim= (ISO 8601, fuso operacional quando omitido). Data sem hora em
    'fim' inclui o dia inteiro. Padrão: mês corrente até agora.
    """
    zone = operational_zone(current_app.config.get("FUSO_OPERACIONAL"))
    local_now = now.astimezone(zone)
    inicio = request.args.get("inicio")
    fim = request.args.get("fim")

    start = _parse_bound(inicio, zone) if inicio else local_now.replace(day=1, hour=0, minute=0,
                                                                           second=0, microsecond=0)
    if fim:
        end = _parse_bound(fim, zone)
        if len(fim) == 10:
            end = end + timedelta(days=1)
    else:
        end = local_now

    try:
        return ReportWindow(start, end)
    except ValueError as e:
        raise WindowError(str(e)) from e


def _service() -> RollupService:
    cfg = current_app.config
    return RollupService(
        _get_supabase(),
        sequencer=current_app.extensions["rollup_sequencer"],
        tz_name=cfg.get("FUSO_OPERACIONAL"),
        top_n=cfg.get("TOP_N"),
        time_tolerance_ms=cfg.get("JANELA_HEURISTICA_MS"),
        sources=source_tables(cfg.get("TABELA_VENDAS_PIX"), cfg.get("TABELA_VOUCHERS")),
        cross_check=bool(cfg.get("CONFERENCIA_CRUZADA_PIX")),
    )


def _run_rollup(seq=None, sequenced=True):
    """
    Executa o rollup da requisição atual. Retorna (seq, result, role, devices).

    Só o painel passa pelo sequenciador; exportações calculam avulso e não
    tornam obsoleta a requisição do painel em andamento.
    """
    now = _now()
    window = _window_from_request(now)
    role = get_current_role()
    uid = get_current_user_id()
    devices = restrict_to_owned_devices(_mikrotiks_acessiveis(role), request.args.get("mikrotik_id"), uid)
    service = _service()
    device_ids = [d.id for d in devices]
    if not sequenced:
        return None, service.compute(role, device_ids, window, devices=devices, now=now), role, devices
    seq, result = service.request(uid, role, device_ids, window, devices=devices, now=now, seq=seq)
    return seq, result, role, devices


# =============== rotas ===============
@dash_bp.route("/rollup")
@login_required
def rollup():
    seq = request.args.get("seq", type=int)
    try:
        seq, result, role, _ = _run_rollup(seq)
    except WindowError as e:
        return jsonify({"success": False, "message": str(e)}), 400
    except SecurityError as e:
        return jsonify({"success": False, "message": str(e)}), 403

    if result is None:
        # resposta superada por requisição mais nova do mesmo usuário
        return jsonify({"success": False, "stale": True, "sequence": seq}), 409

    if result.unavailable:
        return jsonify({
            "success": False,
            "retry": True,
            "message": "Não foi possível carregar as vendas. Tente novamente.",
            "failed_sources": result.failed_sources,
            "sequence": seq,
        }), 503

    log_data_access("vendas", "ROLLUP", record_count=len(result.records))
    body = result.to_dict()
    body["success"] = True
    return jsonify(body)


def _export(kind: str):
    try:
        _, result, role, devices = _run_rollup(sequenced=False)
    except WindowError as e:
        return jsonify({"success": False, "message": str(e)}), 400
    except SecurityError as e:
        return jsonify({"success": False, "message": str(e)}), 403

    if result.unavailable:
        return jsonify({"success": False, "retry": True,
                        "message": "Não foi possível carregar as vendas. Tente novamente."}), 503

    device_names = {d.id: d.name for d in devices}
    user_names = _nomes_contas() if role == "admin" else {}
    tz_name = current_app.config.get("FUSO_OPERACIONAL")
    log_data_access("vendas", f"EXPORT_{kind.upper()}", record_count=len(result.records))

    stamp = result.window.start.astimezone(operational_zone(tz_name)).strftime("%Y%m")
    headers = {}
    if result.partial:
        headers["X-Rollup-Parcial"] = ",".join(result.failed_sources)

    if kind == "csv":
        body = export_sales_csv(result.records, role, device_names, user_names, tz_name)
        headers["Content-Disposition"] = f"attachment; filename=vendas_{stamp}.csv"
        return Response(body, mimetype="text/csv; charset=utf-8", headers=headers)

    body = export_sales_xlsx(result.records, role, device_names, user_names, tz_name)
    headers["Content-Disposition"] = f"attachment; filename=vendas_{stamp}.xlsx"
    return Response(body, headers=headers,
                    mimetype="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet")


@dash_bp.route("/vendas.csv")
@login_required
def vendas_csv():
    return _export("csv")


@dash_bp.route("/vendas.xlsx")
@login_required
def vendas_xlsx():
    return _export("xlsx")


@cached_by_user('assinatura')
def _assinatura_ativa():
    result = (_get_supabase().table("user_subscriptions")
              .select("*, subscription_plans(id, name, price, duration_days)")
              .eq("user_id", get_current_user_id())
              .eq("status", "active")
              .order("created_at", desc=True)
              .limit(1)
              .execute())
    return result.data[0] if result.data else None


@dash_bp.route("/assinatura")
@login_required
def assinatura():
    row = _assinatura_ativa()
    if row is None:
        return jsonify({"success": True, "has_active_plan": False, "is_trial": False,
                        "days_remaining": 0, "expired": True, "plan": None})

    sub = Subscription.from_row(row)
    now = _now()
    active = sub.is_active(now)
    return jsonify({
        "success": True,
        "has_active_plan": active,
        "is_trial": sub.is_trial,
        "days_remaining": sub.days_remaining(now),
        "expired": not active,
        "plan": {"id": sub.plan_id, "name": sub.plan_name, "price": sub.plan_price},
        "expires_at": sub.expires_at.isoformat() if sub.expires_at else None,
    })
