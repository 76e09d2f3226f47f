from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
import structlog

logger = structlog.get_logger()


class TransferError(Exception):
    """The provider rejected the transfer or could not be reached."""

    def __init__(self, details: Any, status_code: Optional[int] = None):
        super().__init__(str(details))
        self.details = details
        self.status_code = status_code


class TransferClient(ABC):
    @abstractmethod
    async def transfer(self, amount: float, recipient: str) -> Any:
        """Send `amount` Naira to `recipient`. Returns the provider payload."""
        pass


def _payload(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class MoniepointClient(TransferClient):
    """Moniepoint transfer API client.

    One POST per call. There is no retry and no idempotency key, so a
    transfer whose response is lost looks like a failure to the caller.
    """

    def __init__(
        self,
        transfer_url: str,
        api_key: str,
        secret_key: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.transfer_url = transfer_url
        self.api_key = api_key
        self.secret_key = secret_key
        self.timeout = timeout
        self.transport = transport

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Secret-Key": self.secret_key,
            "Content-Type": "application/json",
        }

    async def transfer(self, amount: float, recipient: str) -> Any:
        logger.info("Sending provider transfer", amount=amount, recipient=recipient)

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.post(
                    self.transfer_url,
                    json={"amount": amount, "recipient": recipient},
                    headers=self._headers()
                )
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                logger.warning("Provider transfer request failed", error=str(e))
                raise TransferError(str(e) or e.__class__.__name__) from e

        if response.is_success:
            return _payload(response)

        logger.warning(
            "Provider rejected transfer",
            status_code=response.status_code,
            recipient=recipient
        )
        raise TransferError(_payload(response), status_code=response.status_code)


_transfer_client: Optional[TransferClient] = None


def get_transfer_client() -> TransferClient:
    global _transfer_client
    if _transfer_client is None:
        from config import get_settings
        settings = get_settings()
        _transfer_client = MoniepointClient(
            settings.moniepoint_transfer_url,
            settings.moniepoint_api_key,
            settings.moniepoint_secret,
            timeout=settings.provider_timeout_seconds,
        )
    return _transfer_client
