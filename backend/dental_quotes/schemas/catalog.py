import enum
from typing import Optional

from pydantic import BaseModel, Field

from dental_quotes.models.quote import Currency


class CatalogUnit(str, enum.Enum):
    session = "alkalom"
    piece = "db"
    arch = "állcsont"
    quadrant = "kvadráns"
    tooth = "fog"


MILK_TOOTH_CATEGORY = "Gyerekfogászat"


class CatalogItem(BaseModel):
    catalog_item_id: str
    catalog_code: str = ""
    catalog_name: str
    catalog_unit: CatalogUnit = CatalogUnit.piece
    catalog_price: int = Field(default=0, ge=0)
    catalog_price_currency: Currency = Currency.huf
    catalog_category: str = ""
    svg_layer: str = ""
    is_full_mouth: bool = False
    is_arch: bool = False
    is_quadrant: bool = False
    max_teeth_per_arch: Optional[int] = Field(default=None, ge=1)
    allowed_teeth: Optional[list[int]] = None
    milk_tooth_only: bool = False
    is_active: bool = True
