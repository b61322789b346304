"""
EPP Connection

HTTPS transport for the .GR registry. EPP documents are POSTed to the
registry proxy; the session lives in a cookie owned by the httpx client.
"""

import logging
import ssl
from typing import Optional

import httpx

from grepp.exceptions import EPPConnectionError

logger = logging.getLogger("grepp.connection")

PRODUCTION_URL = "https://regepp.ics.forth.gr:700/epp/proxy"
SANDBOX_URL = "https://uat-regepp.ics.forth.gr:700/epp/proxy"

USER_AGENT = "grepp-client/1.1"


class EPPConnection:
    """
    HTTPS connection to the registry EPP proxy.

    Server certificate and hostname are always verified, against ``ca_file``
    when given, otherwise against the default trust store.
    """

    def __init__(
        self,
        url: str = SANDBOX_URL,
        ca_file: str = None,
        timeout: float = 30.0,
        connect_timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize connection.

        Args:
            url: EPP endpoint URL
            ca_file: Path to CA bundle (PEM) for the registry chain
            timeout: Total request timeout in seconds
            connect_timeout: Connect timeout in seconds
            transport: Optional httpx transport, used by tests
        """
        self.url = url
        self.ca_file = ca_file
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self._transport = transport
        self._client: Optional[httpx.Client] = None

    def _create_client(self) -> httpx.Client:
        if self.ca_file:
            try:
                verify = ssl.create_default_context(cafile=self.ca_file)
            except (OSError, ssl.SSLError) as e:
                raise EPPConnectionError(f"Cannot load CA bundle {self.ca_file}: {e}")
        else:
            verify = True

        return httpx.Client(
            verify=verify,
            timeout=httpx.Timeout(self.timeout, connect=self.connect_timeout),
            headers={
                "Content-Type": "text/xml; charset=UTF-8",
                "User-Agent": USER_AGENT,
            },
            transport=self._transport,
        )

    @property
    def is_open(self) -> bool:
        return self._client is not None

    def post(self, xml: bytes) -> bytes:
        """
        POST an EPP document and return the response body.

        Raises:
            EPPConnectionError: On connection, TLS or timeout failure, or a
                non-200 HTTP status
        """
        if self._client is None:
            self._client = self._create_client()

        try:
            response = self._client.post(self.url, content=xml)
        except httpx.TimeoutException as e:
            logger.error(f"Request to {self.url} timed out: {e}")
            raise EPPConnectionError(f"Connection error: timeout ({e})")
        except httpx.HTTPError as e:
            logger.error(f"Request to {self.url} failed: {e}")
            raise EPPConnectionError(f"Connection error: {e}")

        if response.status_code != 200:
            logger.error(f"HTTP error from {self.url}: {response.status_code}")
            raise EPPConnectionError(
                f"HTTP error: {response.status_code}",
                http_status=response.status_code,
            )

        return response.content

    def close(self) -> None:
        """Close the HTTP client and discard the session cookies."""
        if self._client is not None:
            self._client.close()
            self._client = None
