from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


# 同一投稿最多一笔“有效”付款（pending 或 paid）
ACTIVE_PAYMENT_STATUSES = frozenset({PaymentStatus.PENDING, PaymentStatus.PAID})


class PaymentCreate(BaseModel):
    amount: Optional[float] = Field(None, gt=0, description="缺省使用 APC_AMOUNT")
    currency: Optional[str] = Field(None, min_length=3, max_length=3)


class MarkPaidRequest(BaseModel):
    transaction_reference: Optional[str] = None


class PaymentNoteRequest(BaseModel):
    reason: Optional[str] = None
