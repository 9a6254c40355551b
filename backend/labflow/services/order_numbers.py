"""Human order codes: ``<work>-<variant><seq>``, e.g. ``CAD-ZIR001`` or ``ACR-HIB002``."""

from __future__ import annotations

import re
from typing import Iterable, Mapping

WORK_TYPE_CODES: dict[str, str] = {
    "cadcam": "CAD",
    "acrilico": "ACR",
}

MATERIAL_CODES: dict[str, str] = {
    "Zirconia": "ZIR",
    "Dissilicato": "DIS",
    "PMMA": "PMM",
    "Metal": "MET",
    "Impressão": "IMP",
}

HYBRID_PROTOCOL = "Hybrid Protocol"
TOTAL_PROSTHESIS = "Total Prosthesis"

SEQUENCE_WIDTH = 3


def order_number_prefix(
    work_type: str | None,
    selected_material: str | None,
    tooth_constructions: Mapping[str, str] | None,
) -> str:
    if work_type == "cadcam":
        material_code = MATERIAL_CODES.get(selected_material or "", "UNK")
        return f"{WORK_TYPE_CODES['cadcam']}-{material_code}"

    if work_type == "acrilico":
        constructions = list((tooth_constructions or {}).values())
        hybrid = constructions.count(HYBRID_PROTOCOL)
        total = constructions.count(TOTAL_PROSTHESIS)
        # Predominant construction wins; ties go to hybrid.
        if hybrid > 0 and hybrid >= total:
            construction_code = "HIB"
        elif total > 0:
            construction_code = "PT"
        else:
            construction_code = "GEN"
        return f"{WORK_TYPE_CODES['acrilico']}-{construction_code}"

    return "PED-GEN"


def next_order_number(prefix: str, existing_numbers: Iterable[str]) -> str:
    """Next sequence after the highest ``<prefix>NNN`` already issued.

    Sequences are zero-padded to three digits and grow past 999.
    """
    pattern = re.compile(rf"^{re.escape(prefix)}(\d{{{SEQUENCE_WIDTH},}})$")
    highest = 0
    for number in existing_numbers:
        match = pattern.match(number or "")
        if match:
            highest = max(highest, int(match.group(1)))
    return f"{prefix}{highest + 1:0{SEQUENCE_WIDTH}d}"
