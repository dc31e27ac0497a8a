from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from cotizador.config import settings


class OrderItem(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    sku: str = Field(min_length=1)
    name: str = Field(min_length=1)
    qty: float = Field(gt=0, strict=True, allow_inf_nan=False)
    price: float = Field(ge=0, strict=True, allow_inf_nan=False)
    discount: float = Field(default=0, ge=0, le=100, strict=True, allow_inf_nan=False)


class Customer(BaseModel):
    name: str = Field(min_length=1)
    phone: str = ""
    email: EmailStr

    @field_validator("phone", mode="before")
    @classmethod
    def _phone_default(cls, v):
        return "" if v is None else v


class OrderBody(BaseModel):
    """Order payload (WooCommerce-like) turned into a quotation."""

    schema_name: str = Field(default_factory=lambda: settings.default_schema, alias="schema")
    order_id: int = Field(gt=0, strict=True)
    customer: Customer
    reference: Optional[str] = None
    items: List[OrderItem] = Field(min_length=1)

    @field_validator("schema_name")
    @classmethod
    def _allowed_schema(cls, v: str) -> str:
        if v not in settings.schema_list:
            raise ValueError(f"schema must be one of: {', '.join(settings.schema_list)}")
        return v


class OrderResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ok: bool = True
    idcotizacion: int
    schema_name: str = Field(alias="schema")
    idempotent: Optional[bool] = None
    items: Optional[int] = None
    message: str


def flatten_validation_errors(errors: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Group pydantic errors by dotted field path:
    {"formErrors": [...], "fieldErrors": {"items.0.price": ["..."]}}
    """
    form_errors: List[str] = []
    field_errors: Dict[str, List[str]] = {}
    for err in errors:
        loc = [str(p) for p in err.get("loc", ()) if p != "body"]
        if not loc or err.get("type") == "json_invalid":
            form_errors.append(err.get("msg", "invalid request"))
            continue
        field_errors.setdefault(".".join(loc), []).append(err.get("msg", "invalid value"))
    return {"formErrors": form_errors, "fieldErrors": field_errors}
