import math
from typing import Any, Optional
import structlog

from models import (
    MineRequest, MineResponse, UserResponse, WithdrawRequest, WithdrawResponse,
)
from payments import TransferClient, TransferError
from repositories import LedgerRepository

# Configure structured logging
logger = structlog.get_logger()


class LedgerServiceError(Exception):
    status_code = 400
    message = "Ledger error"

    def __init__(self, message: Optional[str] = None, details: Any = None):
        super().__init__(message or self.message)
        self.message = message or self.message
        self.details = details


class InvalidPayload(LedgerServiceError):
    status_code = 400
    message = "Invalid payload"


class UserNotFound(LedgerServiceError):
    status_code = 404
    message = "User not found"


class InsufficientFunds(LedgerServiceError):
    status_code = 400
    message = "Insufficient funds"


class RateLimited(LedgerServiceError):
    status_code = 429
    message = "Too many withdrawal attempts, try later."


class ProviderTransferFailed(LedgerServiceError):
    status_code = 500
    message = "Moniepoint transfer failed"


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves toward positive infinity."""
    floor = math.floor(value)
    return floor + 1 if value - floor >= 0.5 else floor


class LedgerService:
    def __init__(self, ledger_repo: LedgerRepository, transfer_client: TransferClient):
        self.ledger_repo = ledger_repo
        self.transfer_client = transfer_client

    async def get_user(self, username: str) -> UserResponse:
        user = await self.ledger_repo.ensure_user(username)
        usd_to_ngn, dav_coin_value_usd = await self.ledger_repo.get_rates()
        return UserResponse(
            username=username,
            balanceDC=user.balanceDC,
            usdToNGN=usd_to_ngn,
            davCoinValueUSD=dav_coin_value_usd
        )

    async def mine(self, request: MineRequest) -> MineResponse:
        """Credit mined DavCoins to a user, creating the user if needed."""
        async with self.ledger_repo.get_lock(request.username):
            user = await self.ledger_repo.ensure_user(request.username)
            new_balance = user.balanceDC + request.amount
            await self.ledger_repo.set_balance(request.username, new_balance)

        logger.info(
            "DavCoins mined",
            username=request.username,
            amount=request.amount,
            new_balance=new_balance
        )
        return MineResponse(balanceDC=new_balance)

    async def withdraw(self, request: WithdrawRequest) -> WithdrawResponse:
        """Convert DavCoins to Naira and pay them out through the provider.

        The balance is deducted before the transfer and restored if the
        provider call fails. The user's lock is held across the transfer, so
        other updates to the same user wait until the outcome is persisted.
        """
        logger.info(
            "Processing withdrawal",
            username=request.username,
            amount_ngn=request.amountNGN,
            recipient=request.recipientAccount
        )

        user = await self.ledger_repo.get_user(request.username)
        if user is None:
            logger.warning("User not found", username=request.username)
            raise UserNotFound()

        async with self.ledger_repo.get_lock(request.username):
            usd_to_ngn, dav_coin_value_usd = await self.ledger_repo.get_rates()
            rate = dav_coin_value_usd * usd_to_ngn
            previous_balance = user.balanceDC

            available_ngn = round_half_up(previous_balance * rate)
            if available_ngn < request.amountNGN or rate <= 0:
                logger.warning(
                    "Insufficient funds for withdrawal",
                    username=request.username,
                    available_ngn=available_ngn,
                    requested_ngn=request.amountNGN
                )
                raise InsufficientFunds()

            # Checked against the rounded amount, deducted at the exact rate
            dc_to_deduct = request.amountNGN / rate
            new_balance = max(0, previous_balance - dc_to_deduct)
            await self.ledger_repo.set_balance(request.username, new_balance, persist=False)

            try:
                transaction = await self.transfer_client.transfer(
                    request.amountNGN, request.recipientAccount
                )
            except BaseException as e:
                await self.ledger_repo.set_balance(request.username, previous_balance)
                logger.error(
                    "Withdrawal rolled back after provider failure",
                    username=request.username,
                    dc_restored=dc_to_deduct,
                    balance=previous_balance,
                    error=str(e) or e.__class__.__name__,
                    provider_status=getattr(e, "status_code", None)
                )
                if isinstance(e, TransferError):
                    raise ProviderTransferFailed(details=e.details) from e
                if isinstance(e, Exception):
                    raise ProviderTransferFailed(details=str(e) or e.__class__.__name__) from e
                raise

            await self.ledger_repo.persist()

        logger.info(
            "Withdrawal successful",
            username=request.username,
            dc_deducted=dc_to_deduct,
            new_balance=new_balance
        )
        return WithdrawResponse(transaction=transaction)


# Factory function for dependency injection
def get_ledger_service(
    ledger_repo: LedgerRepository,
    transfer_client: TransferClient
) -> LedgerService:
    return LedgerService(ledger_repo, transfer_client)
