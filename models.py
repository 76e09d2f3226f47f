from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, Optional
from datetime import datetime


class UserBalance(BaseModel):
    model_config = ConfigDict(extra="allow")

    balanceDC: float = Field(0.0, description="DavCoin balance")


class LedgerState(BaseModel):
    """Whole persisted document: users plus the two exchange rates."""

    model_config = ConfigDict(extra="allow")

    users: Dict[str, UserBalance] = Field(default_factory=dict)
    usdToNGN: float = Field(..., description="Naira per US dollar")
    davCoinValueUSD: float = Field(..., description="US dollars per DavCoin")


class MineRequest(BaseModel):
    username: str = Field(..., strict=True, min_length=1, description="User to credit")
    amount: float = Field(
        ...,
        strict=True,
        allow_inf_nan=False,
        description="DavCoins to add (no range check)"
    )


class WithdrawRequest(BaseModel):
    username: str = Field(..., strict=True, min_length=1, description="User to debit")
    amountNGN: float = Field(
        ...,
        strict=True,
        allow_inf_nan=False,
        description="Amount to pay out, in Naira"
    )
    recipientAccount: str = Field(
        ...,
        strict=True,
        min_length=1,
        description="Recipient bank account"
    )


class UserResponse(BaseModel):
    username: str
    balanceDC: float
    usdToNGN: float
    davCoinValueUSD: float


class MineResponse(BaseModel):
    message: str = "DavCoins mined"
    balanceDC: float


class WithdrawResponse(BaseModel):
    message: str = "Withdrawal successful"
    transaction: Any = Field(None, description="Provider response, passed through unchanged")


class ErrorResponse(BaseModel):
    error: str = Field(..., description="Error description")
    details: Optional[Any] = Field(None, description="Upstream error detail, if any")


class HealthResponse(BaseModel):
    status: str = Field(..., description="Service health status")
    timestamp: datetime = Field(default_factory=datetime.now)
    users_count: int = Field(..., description="Number of users in the ledger")
