from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

ToothSelection = Literal["none", "tooth-base", "milktooth", "implant", "variants"]
EndoStatus = Literal[
    "none",
    "endo-medical-filling",
    "endo-filling",
    "endo-filling-incomplete",
    "endo-glass-pin",
    "endo-metal-pin",
    "endo-resection",
]
FillingMaterial = Literal["none", "amalgam", "composite", "gic", "temporary"]
BridgeUnit = Literal["none", "removable", "zircon", "metal", "temporary", "bar-prosthesis"]
Mobility = Literal["none", "m1", "m2", "m3"]
CrownMaterial = Literal[
    "natural", "broken", "radix", "emax", "zircon", "metal", "temporary", "telescope"
]


class ToothState(BaseModel):
    tooth_selection: ToothSelection = "tooth-base"
    pulp_inflam: bool = False
    endo_resection: bool = False
    mods: list[str] = Field(default_factory=list)
    endo: EndoStatus = "none"
    caries: list[str] = Field(default_factory=list)
    filling_material: FillingMaterial = "none"
    filling_surfaces: list[str] = Field(default_factory=list)
    fissure_sealing: bool = False
    contact_mesial: bool = False
    contact_distal: bool = False
    bruxism_wear: bool = False
    bruxism_neck_wear: bool = False
    broken_mesial: bool = False
    broken_incisal: bool = False
    broken_distal: bool = False
    extraction_wound: bool = False
    extraction_plan: bool = False
    parapulpal_pin: bool = False
    bridge_pillar: bool = False
    bridge_unit: BridgeUnit = "none"
    mobility: Mobility = "none"
    crown_material: CrownMaterial = "natural"


class OdontogramGlobals(BaseModel):
    wisdom_visible: bool = True
    show_base: bool = False
    occlusal_visible: bool = False
    show_healthy_pulp: bool = False
    edentulous: bool = False


class OdontogramState(BaseModel):
    version: str = "1.0"
    globals: OdontogramGlobals = Field(default_factory=OdontogramGlobals)
    teeth: dict[str, ToothState] = Field(default_factory=dict)
