from __future__ import annotations

import enum
from dataclasses import dataclass

from dental_quotes.schemas.catalog import MILK_TOOTH_CATEGORY, CatalogItem
from dental_quotes.schemas.odontogram import OdontogramState
from dental_quotes.schemas.quote import QuoteItem
from dental_quotes.services.layer_spec import (
    MATERIAL_OPTIONS,
    SURFACE_NAMES,
    SelectionRequirement,
    arch_for_tooth,
    parse_layer_spec,
    quadrant_for_tooth,
    resolve_layer_ids,
    selection_requirement,
)
from dental_quotes.services.odontogram import compute_state, has_milk_teeth, is_milk_tooth

FULL_MOUTH_AREA = "full-mouth"


class PlacementNotice(str, enum.Enum):
    tooth_not_allowed = "tooth_not_allowed"
    milk_tooth_required = "milk_tooth_required"
    cap_reached = "cap_reached"
    duplicate = "duplicate"
    full_mouth_requires_catalog = "full_mouth_requires_catalog"
    selection_required = "selection_required"
    too_many_surfaces = "too_many_surfaces"
    invalid_selection = "invalid_selection"
    not_found = "not_found"


@dataclass(frozen=True)
class PlacementOutcome:
    items: list[QuoteItem]
    line_id: str | None = None
    notice: PlacementNotice | None = None
    message: str | None = None
    selection: SelectionRequirement | None = None
    changed: bool = False

    @property
    def accepted(self) -> bool:
        return self.notice is None


def _rejected(
    items: list[QuoteItem],
    notice: PlacementNotice,
    message: str,
    selection: SelectionRequirement | None = None,
) -> PlacementOutcome:
    return PlacementOutcome(items=list(items), notice=notice, message=message, selection=selection)


def _appended(items: list[QuoteItem], item: QuoteItem) -> PlacementOutcome:
    return PlacementOutcome(items=[*items, item], line_id=item.line_id, changed=True)


def create_quote_item(
    catalog_item: CatalogItem,
    *,
    tooth_num: str | None = None,
    treated_area: str | None = None,
    selected_surfaces: list[str] | None = None,
    selected_material: str | None = None,
) -> QuoteItem:
    tokens = parse_layer_spec(catalog_item.svg_layer)
    return QuoteItem(
        catalog_item_id=catalog_item.catalog_item_id,
        quote_name=catalog_item.catalog_name,
        quote_unit=catalog_item.catalog_unit.value,
        quote_unit_price_gross=catalog_item.catalog_price,
        quote_unit_price_currency=catalog_item.catalog_price_currency,
        tooth_num=tooth_num,
        treated_area=treated_area,
        selected_surfaces=selected_surfaces,
        selected_material=selected_material,
        resolved_layers=resolve_layer_ids(tokens, selected_surfaces, selected_material),
    )


def catalog_item_available(catalog_item: CatalogItem, state: OdontogramState | None) -> bool:
    if catalog_item.catalog_category == MILK_TOOTH_CATEGORY:
        return has_milk_teeth(state)
    return True


def _restriction(
    items: list[QuoteItem],
    catalog_item: CatalogItem,
    tooth: int,
    baseline: OdontogramState | None,
) -> PlacementOutcome | None:
    if catalog_item.allowed_teeth and tooth not in catalog_item.allowed_teeth:
        allowed = ", ".join(str(value) for value in catalog_item.allowed_teeth)
        return _rejected(
            items,
            PlacementNotice.tooth_not_allowed,
            f"{catalog_item.catalog_name} cannot be applied to tooth {tooth} (allowed: {allowed})",
        )
    if catalog_item.milk_tooth_only and not is_milk_tooth(compute_state(items, baseline), tooth):
        return _rejected(
            items,
            PlacementNotice.milk_tooth_required,
            f"{catalog_item.catalog_name} requires a milk tooth at {tooth}",
        )
    return None


def _find_area_item(
    items: list[QuoteItem], catalog_item_id: str, treated_area: str
) -> QuoteItem | None:
    return next(
        (
            item
            for item in items
            if item.catalog_item_id == catalog_item_id and item.treated_area == treated_area
        ),
        None,
    )


def _place_on_capped_arch(
    items: list[QuoteItem], catalog_item: CatalogItem, tooth: int
) -> PlacementOutcome:
    arch = arch_for_tooth(tooth)
    existing = _find_area_item(items, catalog_item.catalog_item_id, arch)
    if existing is None:
        return _appended(items, create_quote_item(catalog_item, tooth_num=str(tooth), treated_area=arch))

    teeth = existing.teeth
    if str(tooth) in teeth:
        return _rejected(items, PlacementNotice.duplicate, f"Tooth {tooth} is already listed")
    if len(teeth) >= (catalog_item.max_teeth_per_arch or 0):
        return _rejected(
            items,
            PlacementNotice.cap_reached,
            f"At most {catalog_item.max_teeth_per_arch} teeth per arch",
        )
    updated = existing.model_copy(update={"tooth_num": ",".join([*teeth, str(tooth)])})
    return PlacementOutcome(
        items=[updated if item.line_id == existing.line_id else item for item in items],
        line_id=existing.line_id,
        changed=True,
    )


def _place_once_per_area(
    items: list[QuoteItem], catalog_item: CatalogItem, treated_area: str
) -> PlacementOutcome:
    if _find_area_item(items, catalog_item.catalog_item_id, treated_area) is not None:
        return _rejected(
            items, PlacementNotice.duplicate, f"{catalog_item.catalog_name} already covers {treated_area}"
        )
    return _appended(items, create_quote_item(catalog_item, treated_area=treated_area))


def place_on_tooth(
    items: list[QuoteItem],
    catalog_item: CatalogItem,
    tooth: int,
    baseline: OdontogramState | None = None,
) -> PlacementOutcome:
    rejection = _restriction(items, catalog_item, tooth, baseline)
    if rejection is not None:
        return rejection

    if catalog_item.is_full_mouth:
        return _rejected(
            items,
            PlacementNotice.full_mouth_requires_catalog,
            "Full-mouth treatments are added from the catalog",
        )

    if catalog_item.is_arch and catalog_item.max_teeth_per_arch:
        return _place_on_capped_arch(items, catalog_item, tooth)

    if catalog_item.is_arch:
        return _place_once_per_area(items, catalog_item, arch_for_tooth(tooth))

    if catalog_item.is_quadrant:
        return _place_once_per_area(items, catalog_item, f"Q{quadrant_for_tooth(tooth)}")

    requirement = selection_requirement(parse_layer_spec(catalog_item.svg_layer))
    if requirement.required:
        return _rejected(
            items,
            PlacementNotice.selection_required,
            "Choose surfaces or material before adding",
            selection=requirement,
        )

    return _appended(items, create_quote_item(catalog_item, tooth_num=str(tooth)))


def complete_selection(
    items: list[QuoteItem],
    catalog_item: CatalogItem,
    tooth: int,
    selected_surfaces: list[str] | None = None,
    selected_material: str | None = None,
    baseline: OdontogramState | None = None,
) -> PlacementOutcome:
    rejection = _restriction(items, catalog_item, tooth, baseline)
    if rejection is not None:
        return rejection

    requirement = selection_requirement(parse_layer_spec(catalog_item.svg_layer))
    surfaces: list[str] | None = None
    material: str | None = None

    if requirement.needs_surfaces:
        surfaces = list(dict.fromkeys(selected_surfaces or []))
        unknown = [surface for surface in surfaces if surface not in SURFACE_NAMES]
        if unknown or not surfaces:
            return _rejected(
                items,
                PlacementNotice.invalid_selection,
                "Select at least one of: " + ", ".join(SURFACE_NAMES),
                selection=requirement,
            )
        if len(surfaces) > requirement.max_surfaces:
            return _rejected(
                items,
                PlacementNotice.too_many_surfaces,
                f"At most {requirement.max_surfaces} surfaces may be selected",
                selection=requirement,
            )

    if requirement.needs_material:
        material = selected_material or MATERIAL_OPTIONS[0]
        if material not in MATERIAL_OPTIONS:
            return _rejected(
                items,
                PlacementNotice.invalid_selection,
                "Material must be one of: " + ", ".join(MATERIAL_OPTIONS),
                selection=requirement,
            )

    item = create_quote_item(
        catalog_item,
        tooth_num=str(tooth),
        selected_surfaces=surfaces,
        selected_material=material,
    )
    return _appended(items, item)


def area_for_teeth(catalog_item: CatalogItem, teeth: list[int]) -> str | None:
    if not teeth:
        return None
    if catalog_item.is_arch:
        return arch_for_tooth(teeth[0])
    if catalog_item.is_quadrant:
        return f"Q{quadrant_for_tooth(teeth[0])}"
    return None


def check_tooth_list(
    items: list[QuoteItem],
    catalog_item: CatalogItem,
    tooth_num: str | None,
    *,
    line_id: str | None = None,
) -> PlacementOutcome | None:
    """Apply the per-tooth catalog rules to a free-form tooth list.

    ``line_id`` names the line being edited so it is not counted as a
    duplicate of itself.
    """
    values = [value.strip() for value in (tooth_num or "").split(",") if value.strip()]
    if not values:
        return None
    try:
        teeth = [int(value) for value in values]
    except ValueError:
        return _rejected(items, PlacementNotice.tooth_not_allowed, f"Invalid tooth list: {tooth_num}")

    if catalog_item.allowed_teeth:
        outside = [tooth for tooth in teeth if tooth not in catalog_item.allowed_teeth]
        if outside:
            allowed = ", ".join(str(value) for value in catalog_item.allowed_teeth)
            return _rejected(
                items,
                PlacementNotice.tooth_not_allowed,
                f"{catalog_item.catalog_name} cannot be applied to tooth {outside[0]} (allowed: {allowed})",
            )

    if not (catalog_item.is_arch or catalog_item.is_quadrant):
        return None

    if len(set(teeth)) != len(teeth):
        return _rejected(items, PlacementNotice.duplicate, "A tooth is listed more than once")
    areas = {area_for_teeth(catalog_item, [tooth]) for tooth in teeth}
    if len(areas) > 1:
        scope = "arch" if catalog_item.is_arch else "quadrant"
        return _rejected(
            items, PlacementNotice.tooth_not_allowed, f"All teeth must be on the same {scope}"
        )
    cap = catalog_item.max_teeth_per_arch if catalog_item.is_arch else None
    if cap and len(teeth) > cap:
        return _rejected(
            items,
            PlacementNotice.cap_reached,
            f"At most {cap} teeth per arch",
        )

    area = areas.pop()
    existing = _find_area_item(
        [item for item in items if item.line_id != line_id], catalog_item.catalog_item_id, area
    )
    if existing is not None:
        return _rejected(
            items, PlacementNotice.duplicate, f"{catalog_item.catalog_name} already covers {area}"
        )
    return None


def add_from_catalog(
    items: list[QuoteItem],
    catalog_item: CatalogItem,
    *,
    tooth_num: str | None = None,
    treated_area: str | None = None,
) -> PlacementOutcome:
    if catalog_item.is_full_mouth:
        treated_area = treated_area or FULL_MOUTH_AREA
    elif tooth_num:
        rejection = check_tooth_list(items, catalog_item, tooth_num)
        if rejection is not None:
            return rejection
        if catalog_item.is_arch or catalog_item.is_quadrant:
            teeth = [int(value) for value in tooth_num.split(",") if value.strip()]
            treated_area = area_for_teeth(catalog_item, teeth)
    item = create_quote_item(catalog_item, tooth_num=tooth_num, treated_area=treated_area)
    return _appended(items, item)


def remove_last_full_mouth(items: list[QuoteItem], catalog_item_id: str) -> PlacementOutcome:
    matching = [item for item in items if item.catalog_item_id == catalog_item_id]
    if not matching:
        return _rejected(items, PlacementNotice.not_found, "Nothing to remove")
    last = matching[-1]
    return PlacementOutcome(
        items=[item for item in items if item.line_id != last.line_id],
        line_id=last.line_id,
        changed=True,
    )


def remove_tooth_from_item(items: list[QuoteItem], line_id: str, tooth: str) -> PlacementOutcome:
    target = next((item for item in items if item.line_id == line_id), None)
    if target is None or not target.tooth_num:
        return _rejected(items, PlacementNotice.not_found, "Treatment line not found")
    remaining = [value for value in target.teeth if value != str(tooth).strip()]
    if len(remaining) == len(target.teeth):
        return _rejected(items, PlacementNotice.not_found, f"Tooth {tooth} is not on this line")
    if not remaining:
        return PlacementOutcome(
            items=[item for item in items if item.line_id != line_id], line_id=line_id, changed=True
        )
    updated = target.model_copy(update={"tooth_num": ",".join(remaining)})
    return PlacementOutcome(
        items=[updated if item.line_id == line_id else item for item in items],
        line_id=line_id,
        changed=True,
    )
