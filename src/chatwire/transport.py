"""Concrete implementations for HTTP transports."""

import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from .errors import NETWORK_ERROR, TIMEOUT_ERROR, TransportError

logger = logging.getLogger(__name__)


class Transport(ABC):
    """Interface for POSTing a JSON body and streaming back the response."""

    @abstractmethod
    def stream(
        self, url: str, headers: Dict[str, str], body: Dict[str, Any]
    ) -> AsyncIterator[bytes]:
        """Sends ``body`` and yields the response body as it arrives.

        Parameters
        ----------
        url : str
            The endpoint to POST to.
        headers : Dict[str, str]
            Request headers, including credentials.
        body : Dict[str, Any]
            The JSON request body.

        Returns
        -------
        AsyncIterator[bytes]
            The raw response body in chunks of arbitrary size. Normal
            exhaustion is the terminal "finished" signal.

        Raises
        ------
        TransportError
            If the request could not be sent or the server answered with an
            error status. Cancelling the consuming task aborts the request
            and is never turned into a ``TransportError``.
        """

    async def aclose(self) -> None:
        """Releases any connection resources."""


class HTTPX(Transport):
    """Streams responses with an ``httpx.AsyncClient``."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = 600.0,
    ):
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def stream(self, url, headers, body):
        try:
            async with self.client.stream("POST", url, headers=headers, json=body) as response:
                if response.status_code >= 400:
                    payload = await response.aread()
                    raise TransportError(
                        f"HTTP error {response.status_code}",
                        status_code=response.status_code,
                        headers=dict(response.headers),
                        body=payload,
                    )
                async for chunk in response.aiter_bytes():
                    yield chunk
        except httpx.TimeoutException as e:
            logger.info("Request to %s timed out: %s", url, e)
            raise TransportError(TIMEOUT_ERROR) from e
        except httpx.HTTPError as e:
            logger.info("Request to %s failed: %s", url, e)
            raise TransportError(NETWORK_ERROR) from e

    async def aclose(self):
        if self._owns_client:
            await self.client.aclose()
