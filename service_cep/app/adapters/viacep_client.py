"""
ViaCEP directory client.
"""

from typing import Optional

import httpx

from shared.logging import get_logger
from shared.errors import CepNotFoundError, ProviderTransportError, UpstreamError
from ..lookup.models import PostalRecord

DEFAULT_BASE_URL = "https://viacep.com.br/ws"


class ViaCepClient:
    """Client for the ViaCEP address directory.

    The underlying ``httpx.AsyncClient`` is injected so it can be shared
    across lookups and swapped for a mock transport in tests.
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 5.0,
    ):
        self.base_url = base_url.rstrip('/')
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout)
        self.logger = get_logger("cep.viacep_client")

    async def fetch(self, cep: str) -> PostalRecord:
        """Fetch the record for an 8-digit CEP."""
        url = f"{self.base_url}/{cep}/json/"

        try:
            response = await self.http_client.get(url)
        except httpx.HTTPError as e:
            self.logger.error("ViaCEP request failed", url=url, error=str(e))
            raise ProviderTransportError(str(e) or type(e).__name__, details={"url": url}) from e

        if response.status_code == 404:
            self.logger.info("ViaCEP does not know cep", cep=cep)
            raise CepNotFoundError(details={"cep": cep})

        if response.status_code >= 400:
            self.logger.error(
                "ViaCEP request returned an error status",
                url=url,
                status_code=response.status_code,
                response=response.text
            )
            raise UpstreamError(response.status_code, details={"cep": cep})

        try:
            record = PostalRecord.model_validate(response.json())
        except ValueError as e:
            self.logger.error("ViaCEP returned an unreadable body", url=url, error=str(e))
            raise UpstreamError(
                response.status_code,
                message="viacep returned an invalid payload",
                details={"cep": cep}
            ) from e

        self.logger.debug("ViaCEP record retrieved", cep=cep)
        return record

    async def aclose(self):
        await self.http_client.aclose()
