"""
EPP Client

Session client for the .GR registry: logs in on demand, sends commands over
the HTTPS connection and decodes every answer into an EppResult.
"""

import logging
import re
from typing import Callable, Iterable, Optional, Tuple, Union

from grepp import commands as cmd
from grepp.connection import PRODUCTION_URL, SANDBOX_URL, EPPConnection
from grepp.exceptions import EPPConnectionError, EPPXMLError
from grepp.models import RESULT_COMMAND_USE_ERROR, RESULT_TRANSPORT_ERROR, EppResult
from grepp.xml_builder import encode, generate_cl_trid
from grepp.xml_parser import decode

logger = logging.getLogger("grepp.client")

ExchangeHook = Callable[[str, Optional[str]], None]

_PW_PATTERN = re.compile(r"(<(?:[\w-]+:)?pw>)(.*?)(</(?:[\w-]+:)?pw>)", re.DOTALL)


def mask_passwords(xml: Union[bytes, str]) -> str:
    """Return the document as text with every <pw> value replaced."""
    if isinstance(xml, bytes):
        xml = xml.decode("utf-8", errors="replace")
    return _PW_PATTERN.sub(r"\1********\3", xml)


class EPPClient:
    """
    Session client for the .GR EPP registry.

    Login happens automatically before the first command that needs a
    session. When the registry reports the session gone (2002), the client
    logs in again once and retries the command.

    Example:
        with EPPClient("registrar_user", "secret", use_sandbox=True) as client:
            result = client.execute(cmd.DomainCheck(names=["example.gr"]))
            print(result.data.is_available("example.gr"))
    """

    def __init__(
        self,
        username: str,
        password: str,
        use_sandbox: bool = False,
        url: str = None,
        ca_file: str = None,
        timeout: float = 30.0,
        connect_timeout: float = 10.0,
        lang: str = "el",
        on_exchange: Optional[ExchangeHook] = None,
        connection: EPPConnection = None,
    ):
        """
        Initialize EPP client.

        Args:
            username: Registry login (clID)
            password: Registry password
            use_sandbox: Use the UAT endpoint instead of production
            url: Explicit endpoint URL, overrides use_sandbox
            ca_file: CA bundle for the registry certificate chain
            timeout: Total request timeout in seconds
            connect_timeout: Connect timeout in seconds
            lang: Login language
            on_exchange: Called with (request, response) text after every
                exchange, passwords masked; response is None on transport
                failure
            connection: Pre-built connection, mainly for tests
        """
        if url is None:
            url = SANDBOX_URL if use_sandbox else PRODUCTION_URL

        self._connection = connection or EPPConnection(
            url=url,
            ca_file=ca_file,
            timeout=timeout,
            connect_timeout=connect_timeout,
        )
        self._username = username
        self._password = password
        self._lang = lang
        self._on_exchange = on_exchange
        self._logged_in = False

        logger.info(f"EPP client initialized ({'UAT' if use_sandbox else 'PRODUCTION'}: {self._connection.url})")

    @property
    def url(self) -> str:
        return self._connection.url

    @property
    def is_logged_in(self) -> bool:
        """Check if logged in."""
        return self._logged_in

    # =========================================================================
    # Session Commands
    # =========================================================================

    def login(self) -> EppResult:
        """Send login; on success the session cookie is kept by the connection."""
        result = self._send(
            cmd.Login(username=self._username, password=self._password, lang=self._lang),
            cmd.Login.expected_codes,
        )
        self._logged_in = result.success
        if result.success:
            logger.info(f"Logged in as {self._username}")
        else:
            logger.error(f"Login failed: {result.message} (code {result.code})")
        return result

    def logout(self) -> EppResult:
        """Send logout and forget the session."""
        result = self._send(cmd.Logout(), cmd.Logout.expected_codes)
        self._logged_in = False
        return result

    def close(self) -> None:
        """Best-effort logout, then drop the connection and its cookies."""
        if self._logged_in:
            try:
                result = self.logout()
                if not result.success:
                    logger.warning(f"Logout failed during close: {result.message} (code {result.code})")
            except Exception as e:
                logger.warning(f"Logout failed during close: {e}")

        self._connection.close()
        self._logged_in = False

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
        return False

    # =========================================================================
    # Command Execution
    # =========================================================================

    def execute(self, command: cmd.EppCommand, expected_code: Union[int, Iterable[int]] = None) -> EppResult:
        """
        Execute a command and return its decoded result.

        Args:
            command: Command to send
            expected_code: Success code(s); defaults to the command's
                expected_codes

        Returns:
            EppResult; transport and decoding failures come back with
            code 0 and success False instead of raising
        """
        expected = self._resolve_expected(command, expected_code)

        if isinstance(command, cmd.Login):
            result = self._send(command, expected)
            self._logged_in = result.success
            return result
        if isinstance(command, cmd.Logout):
            result = self._send(command, expected)
            self._logged_in = False
            return result

        just_logged_in = False
        if not self._logged_in:
            login_result = self.login()
            if not login_result.success:
                return login_result
            just_logged_in = True

        result = self._send(command, expected)

        if result.code == RESULT_COMMAND_USE_ERROR and not just_logged_in:
            logger.info("Registry reported command use error, logging in again")
            self._logged_in = False
            login_result = self.login()
            if not login_result.success:
                return login_result
            result = self._send(command, expected)

        return result

    @staticmethod
    def _resolve_expected(command: cmd.EppCommand, expected_code) -> Tuple[int, ...]:
        if expected_code is None:
            return tuple(command.expected_codes)
        if isinstance(expected_code, int):
            return (expected_code,)
        return tuple(expected_code)

    def _send(self, command: cmd.EppCommand, expected: Tuple[int, ...]) -> EppResult:
        """Encode, POST and decode one command without any session handling."""
        xml = encode(command, generate_cl_trid())
        request_text = mask_passwords(xml)
        logger.debug(f"Request: {request_text}")

        try:
            response_xml = self._connection.post(xml)
        except EPPConnectionError as e:
            self._notify(request_text, None)
            return EppResult.transport_error(e)

        response_text = mask_passwords(response_xml)
        logger.debug(f"Response: {response_text}")
        self._notify(request_text, response_text)

        try:
            result = decode(response_xml, expected)
        except EPPXMLError as e:
            logger.error(f"Invalid response to {type(command).__name__}: {e.message}")
            return EppResult(
                code=RESULT_TRANSPORT_ERROR,
                message=f"Invalid response: {e.message}",
                success=False,
                raw_xml=response_text,
            )

        if not result.success:
            logger.debug(f"{type(command).__name__} returned {result.code}: {result.message}")
        return result

    def _notify(self, request: str, response: Optional[str]) -> None:
        if self._on_exchange is None:
            return
        try:
            self._on_exchange(request, response)
        except Exception as e:
            logger.warning(f"Exchange hook failed: {e}")
