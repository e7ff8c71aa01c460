"""
HTTP client for the treasury pull service.

Wraps the service routes on top of ``httpx.AsyncClient`` and can sign
compliance declarations locally, which is what a wallet frontend does in a
browser.
"""

import logging
from typing import Any, Dict

import httpx
from eth_account import Account

from ..adapters.evm.schemas import StructuredMessage
from ..adapters.evm.signatures import sign_structured_message
from ..engine.exceptions import ApiResponseError


logger = logging.getLogger(__name__)


class TreasuryClient(httpx.AsyncClient):
    """
    Extended httpx.AsyncClient with helpers for the delegated transfer flow.

    Fully compatible with httpx.AsyncClient - supports all methods, properties,
    and can be used as an async context manager.

    Usage:
        ```python
        async with TreasuryClient(base_url="http://localhost:3002") as client:
            await client.authorize(private_key, "10")
            result = await client.transfer(user_address, "10")
        ```
    """

    async def request_signature(self, user_address: str, amount: Any = "0") -> Dict[str, Any]:
        """Fetch the compliance declaration ``{domain, types, primaryType, value}`` to sign."""
        return await self._call("POST", "/get-signature-request", json={
            "userAddress": user_address,
            "amount": str(amount),
        })

    async def submit_authorization(
        self,
        user_address: str,
        signature: str,
        value: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Submit a signed declaration for verification and storage."""
        return await self._call("POST", "/authorize", json={
            "userAddress": user_address,
            "signature": signature,
            "value": value,
        })

    async def authorize(self, private_key: str, amount: Any = "0") -> Dict[str, Any]:
        """
        Request a challenge, sign it with ``private_key`` and submit it.

        Args:
            private_key: Signing key of the user wallet
            amount: Display-unit amount the signature covers

        Returns:
            The /authorize response body
        """
        user_address = Account.from_key(private_key).address
        challenge = await self.request_signature(user_address, amount)
        message = StructuredMessage.model_validate(challenge)
        signature = sign_structured_message(private_key, message)
        logger.info("Signed compliance declaration for %s amount=%s", user_address, amount)
        return await self.submit_authorization(user_address, signature, challenge["value"])

    async def transfer(self, user_address: str, amount: Any) -> Dict[str, Any]:
        """Trigger a pull of ``amount`` (display units) from ``user_address``."""
        return await self._call("POST", "/transfer-tokens", json={
            "userAddress": user_address,
            "amount": str(amount),
        })

    async def authorization_status(self, user_address: str) -> Dict[str, Any]:
        return await self._call("GET", f"/authorization-status/{user_address}")

    async def health(self) -> Dict[str, Any]:
        return await self._call("GET", "/api/health")

    async def _call(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        response = await self.request(method, url, **kwargs)
        if response.is_success:
            return response.json()

        try:
            payload = response.json()
        except ValueError:
            payload = {"message": response.text}
        if not isinstance(payload, dict):
            payload = {"message": str(payload)}
        raise ApiResponseError(status_code=response.status_code, payload=payload)
