"""
Backend proposal client.

Renders and delivers proposals through the hosted backend's
``generate-proposal`` function. Implements both collaborator interfaces the
proposal workflow awaits (render_proposal / send_proposal).
"""

import logging
from typing import Any, Optional

import httpx

from proposal_errors import ExternalCollaboratorFailure
from proposal_workflow import RenderedProposal
from tier_pricing import TierPricing

logger = logging.getLogger(__name__)

FUNCTION_PATH = "/functions/v1/generate-proposal"


class BackendProposalClient:
    """
    Talks to the generate-proposal backend function.

    Every call is a JSON POST with an ``action`` field; the function answers
    ``{"ok": true, "data": {...}}`` or ``{"ok": false, "error": "..."}``.
    Pass ``client`` to reuse a pooled httpx.AsyncClient (tests pass one built
    on httpx.MockTransport); otherwise a client is opened per request.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        tenant_id: str,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not base_url:
            raise ValueError("Backend base_url is required")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.tenant_id = tenant_id
        self.timeout = timeout
        self._client = client

    @classmethod
    def from_config(cls, client: Optional[httpx.AsyncClient] = None) -> "BackendProposalClient":
        from config import config

        backend = config.backend
        if not backend.configured:
            raise ValueError("PROPOSAL_BACKEND_URL and PROPOSAL_BACKEND_KEY must be set")
        return cls(
            base_url=backend.base_url,
            api_key=backend.api_key,
            tenant_id=backend.tenant_id,
            timeout=backend.timeout,
            client=client,
        )

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}{FUNCTION_PATH}"

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def _post(self, payload: dict[str, Any]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(self.endpoint, json=payload, headers=self._headers())
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(self.endpoint, json=payload, headers=self._headers())

    async def _call(self, payload: dict[str, Any]) -> dict[str, Any]:
        action = payload["action"]
        logger.debug("generate-proposal %s for tenant %s", action, self.tenant_id)
        try:
            response = await self._post(payload)
        except httpx.HTTPError as exc:
            logger.error("generate-proposal %s request failed: %s", action, exc, exc_info=True)
            raise ExternalCollaboratorFailure(
                f"generate-proposal {action} request failed: {exc}", collaborator="backend"
            ) from exc

        try:
            body = response.json()
        except ValueError as exc:
            logger.error("generate-proposal %s returned non-JSON (HTTP %s)", action, response.status_code)
            raise ExternalCollaboratorFailure(
                f"generate-proposal {action} returned a malformed body (HTTP {response.status_code})",
                collaborator="backend",
            ) from exc

        if not isinstance(body, dict) or response.is_error or body.get("ok") is not True:
            message = body.get("error") if isinstance(body, dict) else None
            message = message or f"HTTP {response.status_code}"
            logger.error("generate-proposal %s failed: %s", action, message)
            raise ExternalCollaboratorFailure(
                f"generate-proposal {action} failed: {message}", collaborator="backend"
            )
        return body

    async def render_proposal(self, tier: TierPricing, scope_of_work: str) -> RenderedProposal:
        """Create the estimate for the selected tier and return its id and preview."""
        body = await self._call({
            "action": "generate",
            "tenantId": self.tenant_id,
            "selectedTier": tier.tier.value,
            "pricingTier": tier.to_dict(),
            "scopeOfWork": scope_of_work,
        })
        data = body.get("data")
        estimate_id = data.get("estimateId") if isinstance(data, dict) else None
        if not estimate_id:
            logger.error("generate-proposal generate answered without an estimateId")
            raise ExternalCollaboratorFailure(
                "generate-proposal generate answered without an estimateId", collaborator="backend"
            )
        return RenderedProposal(proposal_id=str(estimate_id), html_preview=data.get("html"))

    async def send_proposal(self, proposal_id: str, recipient_email: str) -> bool:
        """Email the share link for a generated estimate."""
        await self._call({
            "action": "send",
            "tenantId": self.tenant_id,
            "estimateId": proposal_id,
            "recipientEmail": recipient_email,
        })
        return True
