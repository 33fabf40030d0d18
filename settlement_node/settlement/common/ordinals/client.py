import logging

import requests

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


class OrdinalsApiError(Exception):
    response: requests.Response
    text: str
    status_code: int

    def __init__(self, response: requests.Response):
        self.response = response
        self.text = response.text
        self.status_code = response.status_code
        super().__init__(self.status_code, self.text)

    @property
    def description(self) -> str:
        try:
            body = self.response.json()
        except ValueError:
            return self.text
        if isinstance(body, dict):
            return str(body.get("error") or body.get("message") or self.text)
        return self.text


class OrdinalsApiNotFound(OrdinalsApiError):
    pass


class OrdinalsApiClient:
    """
    Client for the 1Sat ordinals indexer: BEEF lookups and raw transaction broadcast
    """

    def __init__(self, base_url: str, *, timeout: float = DEFAULT_TIMEOUT_SECONDS):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def __repr__(self):
        return f"OrdinalsApiClient(base_url={self.base_url!r})"

    def request(self, method, url, **kwargs) -> requests.Response:
        kwargs.setdefault("timeout", self.timeout)
        logger.debug("%s %s%s", method, self.base_url, url)
        resp = requests.request(method, f"{self.base_url}{url}", **kwargs)
        if not resp.ok:
            if resp.status_code == 404:
                raise OrdinalsApiNotFound(resp)
            raise OrdinalsApiError(resp)
        return resp

    def get_beef(self, txid: str) -> bytes:
        return self.request("GET", f"/v5/tx/{txid}/beef").content

    def broadcast(self, raw_tx: bytes) -> str:
        """
        Broadcast a serialized transaction, returning its txid
        """
        resp = self.request(
            "POST",
            "/v5/tx",
            data=raw_tx,
            headers={"Content-Type": "application/octet-stream"},
        )
        return resp.json()["txid"]
