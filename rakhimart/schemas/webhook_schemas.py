from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict


class CashfreeOrderRef(BaseModel):
    model_config = ConfigDict(extra="allow")

    order_id: str
    order_amount: Optional[float] = None


class CashfreePaymentRef(BaseModel):
    model_config = ConfigDict(extra="allow")

    cf_payment_id: Optional[Union[int, str]] = None
    payment_status: Optional[str] = None


class CashfreeData(BaseModel):
    model_config = ConfigDict(extra="allow")

    order: CashfreeOrderRef
    payment: Optional[CashfreePaymentRef] = None


class CashfreeWebhook(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str
    data: Optional[CashfreeData] = None


class RazorpayEntity(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    order_id: Optional[str] = None
    receipt: Optional[str] = None
    status: Optional[str] = None
    notes: Union[Dict[str, Any], list, None] = None

    @property
    def order_number(self) -> Optional[str]:
        # razorpay sends an empty list when no notes were set
        if isinstance(self.notes, dict) and self.notes.get("order_number"):
            return str(self.notes["order_number"])
        return self.receipt


class RazorpayWrapped(BaseModel):
    entity: RazorpayEntity


class RazorpayPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    payment: Optional[RazorpayWrapped] = None
    order: Optional[RazorpayWrapped] = None


class RazorpayWebhook(BaseModel):
    model_config = ConfigDict(extra="allow")

    event: str
    payload: RazorpayPayload
