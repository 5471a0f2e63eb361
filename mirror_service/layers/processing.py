"""
数据处理层
将 ANAF 原始响应转换为内部格式：
  - 基础信息（date_generale / 地址 / TVA）→ 企业档案
  - 资产负债表指标（val_den_indicator 文本）→ 规范化字段名
"""

import logging
import re
import unicodedata
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]+")
_YEAR = re.compile(r"(?<!\d)(\d{4})(?!\d)")


# ── 资产负债表指标 ────────────────────────────────────────

def normalize_label(label: str) -> str:
    """
    将 ANAF 指标文本转换为 camelCase 字段名，去除罗马尼亚语变音符号

    "Cifra de afaceri netă" → "cifraDeAfaceriNeta"
    """
    folded = unicodedata.normalize("NFKD", label or "")
    folded = "".join(ch for ch in folded if not unicodedata.combining(ch))
    words = [w for w in _NON_ALNUM.sub(" ", folded).split(" ") if w]
    if not words:
        return ""
    head, *tail = (w.lower() for w in words)
    return head + "".join(w[:1].upper() + w[1:] for w in tail)


def _to_number(value: Any) -> float:
    if isinstance(value, (int, float)):
        return value
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0


def map_indicators(items: List[Dict[str, Any]]) -> Dict[str, float]:
    """
    指标列表 → {字段名: 数值}

    不同文本规范化后得到相同字段名时，后出现的指标以 `<字段名>_<指标代码>`
    命名，不会覆盖已有字段；备用名称也已存在时忽略该指标
    """
    result: Dict[str, float] = {}
    labels: Dict[str, str] = {}
    for item in items or []:
        label = item.get("val_den_indicator") or ""
        code = str(item.get("indicator") or "").strip()
        name = normalize_label(label) or normalize_label(code)
        if not name:
            logger.warning(f"忽略无名称的指标: {item}")
            continue

        if name in result and labels.get(name) != label:
            namespaced = f"{name}_{normalize_label(code) or len(result)}"
            if namespaced in result:
                logger.warning(f"指标 '{label}' 的备用名称 {namespaced} 已被占用，忽略该指标")
                continue
            logger.warning(f"指标名称冲突: '{label}' 与 '{labels[name]}' 均映射为 {name}，改用 {namespaced}")
            name = namespaced

        result[name] = _to_number(item.get("val_indicator"))
        labels[name] = label
    return result


def are_all_indicators_zero(indicators: Dict[str, Any]) -> bool:
    """全部指标为零（包括空指标）视为未申报"""
    return all(value == 0 for value in indicators.values())


def transform_balance_sheet(body: Dict[str, Any], year: int) -> Dict[str, Any]:
    return {
        "an": int(body.get("an") or year),
        "codCaen": str(body["caen"]) if body.get("caen") else None,
        "denumireCaen": body.get("den_caen") or None,
        "indicators": map_indicators(body.get("i") or []),
    }


# ── 企业基础信息 ──────────────────────────────────────────

def parse_registration_status(value: Optional[str]) -> str:
    """'INREGISTRAT din data 12.04.2005' → 'INREGISTRAT'"""
    if not value:
        return ""
    match = re.match(r"^([A-Za-z]+)", value.strip())
    return match.group(1) if match else value


def convert_address(address: Optional[Dict[str, Any]], prefix: str) -> Dict[str, str]:
    """ANAF 地址字段带 s（注册地址）/ d（税务地址）前缀"""
    address = address or {}

    def field(name: str) -> str:
        return address.get(f"{prefix}{name}") or ""

    return {
        "strada": field("denumire_Strada"),
        "numar": field("numar_Strada"),
        "localitate": field("denumire_Localitate"),
        "judet": field("denumire_Judet"),
        "prescurtareJudet": field("cod_JudetAuto"),
        "detaliiAdresa": field("detalii_Adresa"),
        "codPostal": field("cod_Postal"),
    }


def _transform_tva(record: Dict[str, Any]) -> Dict[str, Any]:
    scop = record.get("inregistrare_scop_Tva") or {}
    rtvai = record.get("inregistrare_RTVAI") or {}
    split = record.get("inregistrare_SplitTVA") or {}
    return {
        "statusTva": bool(scop.get("scpTVA")),
        "perioadeTva": [
            {
                "dataInceput": p.get("data_inceput_ScpTVA") or "",
                "dataSfarsit": p.get("data_sfarsit_ScpTVA") or "",
                "motivAnulare": p.get("mesaj_ScpTVA") or "",
            }
            for p in scop.get("perioade_TVA") or []
        ],
        "tvaIncasare": {
            "statusTvaIncasare": bool(rtvai.get("statusTvaIncasare")),
            "dataInceput": rtvai.get("dataInceputTvaInc") or "",
            "dataSfarsit": rtvai.get("dataSfarsitTvaInc") or "",
        },
        "splitTva": {
            "statusSplitTva": bool(split.get("statusSplitTVA")),
            "dataInceput": split.get("dataInceputSplitTVA") or "",
            "dataSfarsit": split.get("dataAnulareSplitTVA") or "",
        },
    }


def transform_general_info(record: Dict[str, Any]) -> Dict[str, Any]:
    """ANAF found 记录 → 企业档案"""
    general = record.get("date_generale") or {}
    return {
        "cui": str(general.get("cui", "")),
        "denumire": general.get("denumire") or "",
        "nrRegCom": general.get("nrRegCom") or None,
        "telefon": general.get("telefon") or None,
        "stareInregistrare": parse_registration_status(general.get("stare_inregistrare")),
        "dataInregistrare": general.get("data_inregistrare") or None,
        "codCaen": general.get("cod_CAEN") or None,
        "denumireCaen": None,
        "statusRoEFactura": bool(general.get("statusRO_e_Factura")),
        "organFiscalCompetent": general.get("organFiscalCompetent") or None,
        "formaProprietate": general.get("forma_de_proprietate") or None,
        "formaOrganizare": general.get("forma_organizare") or None,
        "formaJuridica": general.get("forma_juridica") or None,
        "tva": _transform_tva(record),
        "adresaSediuSocial": convert_address(record.get("adresa_sediu_social"), "s"),
        "adresaDomiciliuFiscal": convert_address(record.get("adresa_domiciliu_fiscal"), "d"),
    }


def registration_year(profile: Optional[Dict[str, Any]]) -> Optional[int]:
    """从 dataInregistrare 中取出年份，无法识别时返回 None"""
    if not profile or not profile.get("dataInregistrare"):
        return None
    match = _YEAR.search(str(profile["dataInregistrare"]))
    return int(match.group(1)) if match else None
