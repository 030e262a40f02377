"""Compliance webhook payload models.

Parsed only after the raw body has been authenticated. Unknown fields are
ignored; Shopify sends numeric ids, which are normalized to strings.
"""

from __future__ import annotations

from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field


def _to_str(value: Any) -> Any:
    if isinstance(value, bool):
        return value  # left for pydantic to reject
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return value.strip() or None
    return value


OptionalId = Annotated[str | None, BeforeValidator(_to_str)]


def _to_str_list(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, list):
        return [s for s in map(_to_str, value) if s is not None]
    return value


IdList = Annotated[list[str], BeforeValidator(_to_str_list)]


class CustomerPayload(BaseModel):
    """The ``customer`` object of customers/redact and customers/data_request."""

    model_config = ConfigDict(extra="ignore")

    id: OptionalId = None
    email: OptionalId = None
    phone: OptionalId = None


class DataRequestRef(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: OptionalId = None


class CompliancePayload(BaseModel):
    """Body of the mandatory compliance webhooks.

    app/uninstalled delivers the shop resource itself, which names the shop
    in ``myshopify_domain`` rather than ``shop_domain``.
    """

    model_config = ConfigDict(extra="ignore")

    shop_id: OptionalId = None
    shop_domain: OptionalId = None
    myshopify_domain: OptionalId = None
    customer: CustomerPayload | None = None
    orders_requested: IdList = Field(default_factory=list)
    orders_to_redact: IdList = Field(default_factory=list)
    data_request: DataRequestRef | None = None

    @property
    def declared_shop(self) -> str | None:
        """Shop domain named inside the signed body, if any."""
        return self.shop_domain or self.myshopify_domain

    def names_other_shop(self, shop: str) -> bool:
        declared = self.declared_shop
        return declared is not None and declared.lower() != shop.strip().lower()
