import logging
from typing import Any

import requests

from .types import (
    FundingSourceResponse,
    TicketResponse,
    TokenConfigResponse,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


class TokenApiError(Exception):
    response: requests.Response
    text: str
    status_code: int

    def __init__(self, response: requests.Response):
        self.response = response
        self.text = response.text
        self.status_code = response.status_code
        super().__init__(self.status_code, self.text)

    @property
    def message(self) -> str:
        """
        The `message` (or `error`) field of a JSON error body, falling back to the raw text
        """
        try:
            body = self.response.json()
        except ValueError:
            return self.text
        if isinstance(body, dict):
            return str(body.get("message") or body.get("error") or self.text)
        return self.text


class TokenApiNotFound(TokenApiError):
    pass


class TokenApiClient:
    """
    Client for the token service: network config, funding sources (UTXOs), cosigning and tickets.

    Every request is authenticated with the `auth_token` query parameter.
    """

    def __init__(self, base_url: str, api_token: str, *, timeout: float = DEFAULT_TIMEOUT_SECONDS):
        self.base_url = base_url.rstrip("/")
        self._api_token = api_token
        self.timeout = timeout

    def __repr__(self):
        return f"TokenApiClient(base_url={self.base_url!r})"

    def request(self, method, url, **kwargs):
        headers = kwargs.setdefault("headers", {})
        headers["Accept"] = "application/json"
        if "json" in kwargs:
            headers["Content-Type"] = "application/json"
        params = kwargs.setdefault("params", {})
        params["auth_token"] = self._api_token
        kwargs.setdefault("timeout", self.timeout)
        logger.debug("%s %s%s", method, self.base_url, url)
        resp = requests.request(method, f"{self.base_url}{url}", **kwargs)
        if not resp.ok:
            if resp.status_code == 404:
                raise TokenApiNotFound(resp)
            raise TokenApiError(resp)
        return resp.json()

    def get(self, url, **kwargs):
        return self.request("GET", url, **kwargs)

    def post(self, url, data: Any, **kwargs):
        return self.request("POST", url, json=data, **kwargs)

    def get_config(self) -> TokenConfigResponse:
        return self.get("/v1/config")

    def get_utxos(self, addresses: list[str]) -> list[FundingSourceResponse]:
        return self.post("/v1/utxos", addresses)

    def cosign_transfer(self, rawtx_base64: str) -> str | None:
        """
        Have the cosigner add its signatures. Returns the cosigned transaction, base64-encoded
        """
        response = self.post("/v1/transfer", {"rawtx": rawtx_base64})
        return response.get("rawtx") if isinstance(response, dict) else None

    def submit_transfer(self, rawtx_base64: str) -> str | None:
        """
        Have the cosigner sign and broadcast the transaction. Returns the ticket id
        """
        response = self.post("/v2/transfer", {"rawtx": rawtx_base64})
        if isinstance(response, dict):
            return response.get("ticketId") or response.get("id")
        return response

    def get_ticket(self, ticket_id: str) -> TicketResponse:
        return self.get("/v2/ticket", params={"ticketID": ticket_id})
