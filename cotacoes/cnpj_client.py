from __future__ import annotations

import json
import os
import urllib.error
import urllib.request

from flask import current_app

from cotacoes.errors import IntegrationClientError
from cotacoes.observability import observe_integration_call
from cotacoes.quoting.cnpj import format_cnpj, normalize_cnpj


SERVICE = "cnpj"


def fetch_company(cnpj: str) -> dict:
    """Returns the normalized registry record for a (checksum valid) CNPJ.

    BrasilAPI is queried first and ReceitaWS is the fallback. A 404 from either
    source surfaces as ``HTTP 404`` so callers can map it to ``cnpj_not_found``.
    """
    digits = normalize_cnpj(cnpj)
    mode = str(_get_config("CNPJ_LOOKUP_MODE", "mock") or "mock").lower()
    if mode == "mock":
        observe_integration_call(SERVICE, "mock")
        return _mock_company(digits)
    if mode != "brasilapi":
        raise IntegrationClientError(f"CNPJ_LOOKUP_MODE invalido: {mode}", service=SERVICE)

    try:
        payload = _request_json(f"{_base_url('BRASILAPI_BASE_URL')}/{digits}")
        observe_integration_call(SERVICE, "brasilapi_ok")
        return _from_brasilapi(digits, payload)
    except IntegrationClientError as primary_error:
        observe_integration_call(SERVICE, "brasilapi_failed")
        try:
            payload = _request_json(f"{_base_url('RECEITAWS_BASE_URL')}/{digits}")
        except IntegrationClientError as fallback_error:
            observe_integration_call(SERVICE, "receitaws_failed")
            if 404 in {primary_error.status_code, fallback_error.status_code}:
                raise IntegrationClientError(
                    "CNPJ lookup HTTP 404: nao encontrado",
                    service=SERVICE,
                    status_code=404,
                ) from fallback_error
            raise

    if str(payload.get("status") or "").upper() == "ERROR":
        observe_integration_call(SERVICE, "receitaws_not_found")
        raise IntegrationClientError(
            f"CNPJ lookup HTTP 404: {str(payload.get('message') or '')[:120]}",
            service=SERVICE,
            status_code=404,
        )
    observe_integration_call(SERVICE, "receitaws_ok")
    return _from_receitaws(digits, payload)


def _from_brasilapi(digits: str, data: dict) -> dict:
    razao_social = data.get("razao_social") or ""
    atividade = None
    if data.get("cnae_fiscal_descricao"):
        atividade = {
            "codigo": str(data.get("cnae_fiscal") or ""),
            "descricao": data.get("cnae_fiscal_descricao"),
        }
    return {
        "razao_social": razao_social,
        "nome_fantasia": data.get("nome_fantasia") or razao_social,
        "situacao_cadastral": data.get("descricao_situacao_cadastral") or "Desconhecida",
        "data_situacao_cadastral": data.get("data_situacao_cadastral") or "",
        "cnpj_formatado": format_cnpj(digits),
        "endereco": _address(data),
        "atividade_principal": atividade,
        "natureza_juridica": data.get("natureza_juridica") or "",
        "capital_social": data.get("capital_social"),
        "source": "brasilapi",
    }


def _from_receitaws(digits: str, data: dict) -> dict:
    razao_social = data.get("nome") or ""
    atividades = data.get("atividade_principal") or []
    atividade = None
    if isinstance(atividades, list) and atividades and isinstance(atividades[0], dict):
        atividade = {
            "codigo": atividades[0].get("code") or "",
            "descricao": atividades[0].get("text") or "",
        }
    capital_social = data.get("capital_social")
    try:
        capital_social = float(capital_social) if capital_social not in (None, "") else None
    except (TypeError, ValueError):
        capital_social = None
    return {
        "razao_social": razao_social,
        "nome_fantasia": data.get("fantasia") or razao_social,
        "situacao_cadastral": data.get("situacao") or "Desconhecida",
        "data_situacao_cadastral": data.get("data_situacao") or "",
        "cnpj_formatado": format_cnpj(digits),
        "endereco": _address(data),
        "atividade_principal": atividade,
        "natureza_juridica": data.get("natureza_juridica") or "",
        "capital_social": capital_social,
        "source": "receitaws",
    }


def _address(data: dict) -> dict:
    return {
        "logradouro": data.get("logradouro") or "",
        "numero": data.get("numero") or "",
        "complemento": data.get("complemento") or "",
        "bairro": data.get("bairro") or "",
        "municipio": data.get("municipio") or "",
        "uf": data.get("uf") or "",
        "cep": data.get("cep") or "",
    }


def _mock_company(digits: str) -> dict:
    # Root ending in 44 is "not found", ending in 99 is an inactive company.
    root = digits[:8]
    if root.endswith("44"):
        raise IntegrationClientError("CNPJ lookup HTTP 404: mock", service=SERVICE, status_code=404)
    situacao = "BAIXADA" if root.endswith("99") else "ATIVA"
    return {
        "razao_social": f"Empresa Demonstracao {root} LTDA",
        "nome_fantasia": f"Demonstracao {root}",
        "situacao_cadastral": situacao,
        "data_situacao_cadastral": "2015-01-01",
        "cnpj_formatado": format_cnpj(digits),
        "endereco": {
            "logradouro": "Rua das Flores",
            "numero": str(int(digits[8:12] or "0")),
            "complemento": "",
            "bairro": "Centro",
            "municipio": "Sao Paulo",
            "uf": "SP",
            "cep": "01001000",
        },
        "atividade_principal": {"codigo": "8121400", "descricao": "Limpeza em predios e em domicilios"},
        "natureza_juridica": "206-2 - Sociedade Empresaria Limitada",
        "capital_social": 100000.0,
        "source": "mock",
    }


def _base_url(key: str) -> str:
    base_url = str(_get_config(key) or "").strip()
    if not base_url:
        raise IntegrationClientError(f"{key} nao configurado.", service=SERVICE)
    return base_url.rstrip("/")


def _request_json(url: str) -> dict:
    timeout = _int_config("CNPJ_LOOKUP_TIMEOUT_SECONDS", 10)
    request = urllib.request.Request(url, headers={"Accept": "application/json"}, method="GET")
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            body = response.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        error_body = exc.read().decode("utf-8") if exc.fp else ""
        raise IntegrationClientError(
            f"CNPJ lookup HTTP {exc.code}: {error_body[:200]}",
            service=SERVICE,
            status_code=exc.code,
        ) from exc
    except urllib.error.URLError as exc:
        raise IntegrationClientError(f"Erro de conexao CNPJ: {exc.reason}", service=SERVICE) from exc

    try:
        payload = json.loads(body) if body else {}
    except json.JSONDecodeError as exc:
        raise IntegrationClientError("Consulta CNPJ retornou JSON invalido.", service=SERVICE) from exc
    if not isinstance(payload, dict):
        raise IntegrationClientError("Consulta CNPJ retornou JSON nao-objeto.", service=SERVICE)
    return payload


def _get_config(key: str, default: object | None = None) -> object | None:
    try:
        return current_app.config.get(key, default)
    except RuntimeError:
        return os.environ.get(key, default)


def _int_config(key: str, default: int) -> int:
    value = _get_config(key, default)
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
