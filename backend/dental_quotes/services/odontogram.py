from __future__ import annotations

import re
from typing import Iterable

from dental_quotes.schemas.odontogram import OdontogramState, ToothState
from dental_quotes.schemas.quote import QuoteItem
from dental_quotes.services.layer_spec import LOWER_TEETH, UPPER_TEETH, special_marker

_BAR_DENTURE_MISSING: dict[str, dict[str, tuple[int, ...]]] = {
    "12": {
        "upper": (16, 15, 13, 11, 21, 23, 25, 26),
        "lower": (46, 45, 43, 41, 31, 33, 35, 36),
    },
    "14": {
        "upper": (17, 16, 15, 13, 11, 21, 23, 25, 26, 27),
        "lower": (47, 46, 45, 43, 41, 31, 33, 35, 36, 37),
    },
}

_FILLING_RE = re.compile(r"^filling-(composite|gic|amalgam|temporary)-(\w+)$")
_CROWN_RE = re.compile(r"^(metal|zircon|emax|temporary|telescope)-crown$")

_ENDO_LAYERS = frozenset({"endo-filling", "endo-medical-filling", "endo-glass-pin", "endo-metal-pin"})
_IMPLANT_MODS = frozenset({"implant-connector", "implant-locator-screw"})
_TELESCOPE_LAYERS = frozenset({"telescope-crown-inside", "telescope-crown-outside"})
_FIXED_BRIDGE_UNITS = frozenset({"metal", "zircon", "temporary"})

FULL_DENTURE = special_marker("full-denture")
BAR_DENTURE_12 = special_marker("bar-denture-12")
BAR_DENTURE_14 = special_marker("bar-denture-14")
NO_TOOTH = special_marker("no-tooth")


def _ensure_tooth(state: OdontogramState, tooth: str) -> ToothState:
    if tooth not in state.teeth:
        state.teeth[tooth] = ToothState()
    return state.teeth[tooth]


def _clear_for_gap(tooth: ToothState) -> None:
    tooth.tooth_selection = "none"
    tooth.crown_material = "natural"
    tooth.filling_material = "none"
    tooth.filling_surfaces = []
    tooth.endo = "none"
    tooth.endo_resection = False
    tooth.bridge_unit = "none"
    tooth.extraction_plan = False
    tooth.extraction_wound = False
    tooth.fissure_sealing = False
    tooth.mods = []


def _add_mod(tooth: ToothState, layer_id: str) -> None:
    if layer_id not in tooth.mods:
        tooth.mods.append(layer_id)


def _apply_layer(tooth: ToothState, layer_id: str) -> None:
    filling = _FILLING_RE.match(layer_id)
    if filling:
        tooth.filling_material = filling.group(1)
        if filling.group(2) not in tooth.filling_surfaces:
            tooth.filling_surfaces.append(filling.group(2))
        return

    if layer_id == "implant-base":
        tooth.tooth_selection = "implant"
        return

    if layer_id in _IMPLANT_MODS:
        tooth.tooth_selection = "implant"
        _add_mod(tooth, layer_id)
        return

    if layer_id in _TELESCOPE_LAYERS:
        tooth.crown_material = "telescope"
        return

    crown = _CROWN_RE.match(layer_id)
    if crown:
        material = crown.group(1)
        tooth.crown_material = material
        if tooth.bridge_unit in _FIXED_BRIDGE_UNITS:
            bridge = "zircon" if material == "emax" else material
            if bridge in _FIXED_BRIDGE_UNITS:
                tooth.bridge_unit = bridge
        return

    if layer_id in _ENDO_LAYERS:
        tooth.endo = layer_id
        return

    if layer_id == "endo-resection":
        tooth.endo_resection = True
        return

    if layer_id == "fissure-sealing-occlusal":
        tooth.fissure_sealing = True
        return

    if layer_id == "prosthesis-crown":
        tooth.tooth_selection = "none"
        tooth.bridge_unit = "removable"
        return

    _add_mod(tooth, layer_id)


def compute_state(
    items: Iterable[QuoteItem],
    baseline: OdontogramState | None = None,
) -> OdontogramState:
    state = baseline.model_copy(deep=True) if baseline is not None else OdontogramState()

    for item in items:
        layers = item.resolved_layers or []

        if FULL_DENTURE in layers and item.treated_area:
            arch_teeth = UPPER_TEETH if item.treated_area == "upper" else LOWER_TEETH
            for tooth in arch_teeth:
                state.teeth[str(tooth)] = ToothState(tooth_selection="none", bridge_unit="removable")
            continue

        bar_12 = BAR_DENTURE_12 in layers
        if (bar_12 or BAR_DENTURE_14 in layers) and item.treated_area:
            missing = _BAR_DENTURE_MISSING["12" if bar_12 else "14"]
            arch_teeth = missing["upper"] if item.treated_area == "upper" else missing["lower"]
            for tooth in arch_teeth:
                state.teeth[str(tooth)] = ToothState(
                    tooth_selection="none", bridge_unit="bar-prosthesis"
                )
            continue

        for tooth_num in item.teeth:
            tooth = _ensure_tooth(state, tooth_num)
            if NO_TOOTH in layers:
                # later layers (e.g. prosthesis-crown) still apply to the gap
                _clear_for_gap(tooth)
            for layer_id in layers:
                if layer_id.startswith("__"):
                    continue
                _apply_layer(tooth, layer_id)

    return state


def is_milk_tooth(state: OdontogramState | None, tooth: int | str) -> bool:
    if state is None:
        return False
    tooth_state = state.teeth.get(str(tooth))
    return tooth_state is not None and tooth_state.tooth_selection == "milktooth"


def has_milk_teeth(state: OdontogramState | None) -> bool:
    if state is None:
        return False
    return any(tooth.tooth_selection == "milktooth" for tooth in state.teeth.values())
