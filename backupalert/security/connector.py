"""Connection-time address enforcement for outbound HTTP.

Every TCP connection opened by the client re-resolves its host and skips
blocked addresses, so a record that changes after validation cannot steer
the request to an internal address.
"""

import contextlib
import typing

import anyio
import httpcore
import httpx

from backupalert.core.config import Settings, get_settings
from backupalert.core.errors import BlockedAddressError, DNSResolutionError
from backupalert.core.logging import get_logger
from backupalert.observability.metrics import BLOCKED_CONNECTIONS
from backupalert.security.address import Resolver, is_blocked_ip, resolve_host

logger = get_logger(__name__, component="connector")


class RebindingSafeBackend(httpcore.AsyncNetworkBackend):
    """httpcore network backend that validates the peer address at dial time.

    TLS is started by httpcore on the returned stream with the original
    host name, so SNI and certificate checks are unaffected by dialing an
    IP literal.
    """

    def __init__(
        self,
        resolver: Resolver | None = None,
        backend: httpcore.AsyncNetworkBackend | None = None,
    ):
        self._resolve = resolver or resolve_host
        self._backend = backend or httpcore.AnyIOBackend()

    async def select_address(self, host: str, port: int) -> str:
        """Resolve a host and return the first address that is not blocked.

        Raises:
            DNSResolutionError: Host does not resolve
            BlockedAddressError: Every resolved address is blocked
        """
        try:
            addresses = await self._resolve(host)
        except DNSResolutionError:
            raise
        except OSError as e:
            raise DNSResolutionError(f"failed to resolve host {host}: {e}") from e

        if not addresses:
            raise DNSResolutionError(f"no addresses found for host {host}")

        for address in addresses:
            if not is_blocked_ip(address):
                return address

        BLOCKED_CONNECTIONS.inc()
        logger.warning("Connection blocked", host=host, port=port, addresses=len(addresses))
        raise BlockedAddressError(f"connection to {host}:{port} blocked: all resolved addresses are blocked")

    async def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: float | None = None,
        local_address: str | None = None,
        socket_options: typing.Iterable[httpcore.SOCKET_OPTION] | None = None,
    ) -> httpcore.AsyncNetworkStream:
        try:
            with anyio.fail_after(timeout):
                address = await self.select_address(host, port)
        except TimeoutError as e:
            raise httpcore.ConnectTimeout(f"timed out resolving {host}") from e

        return await self._backend.connect_tcp(
            address,
            port,
            timeout=timeout,
            local_address=local_address,
            socket_options=socket_options,
        )

    async def connect_unix_socket(
        self,
        path: str,
        timeout: float | None = None,
        socket_options: typing.Iterable[httpcore.SOCKET_OPTION] | None = None,
    ) -> httpcore.AsyncNetworkStream:
        raise BlockedAddressError("unix socket connections are blocked")

    async def sleep(self, seconds: float) -> None:
        await self._backend.sleep(seconds)


_ERROR_MAP: tuple[tuple[type[Exception], type[httpx.TransportError]], ...] = (
    (httpcore.ConnectTimeout, httpx.ConnectTimeout),
    (httpcore.ReadTimeout, httpx.ReadTimeout),
    (httpcore.WriteTimeout, httpx.WriteTimeout),
    (httpcore.PoolTimeout, httpx.PoolTimeout),
    (httpcore.TimeoutException, httpx.TimeoutException),
    (httpcore.ConnectError, httpx.ConnectError),
    (httpcore.ReadError, httpx.ReadError),
    (httpcore.WriteError, httpx.WriteError),
    (httpcore.NetworkError, httpx.NetworkError),
    (httpcore.RemoteProtocolError, httpx.RemoteProtocolError),
    (httpcore.LocalProtocolError, httpx.LocalProtocolError),
    (httpcore.ProtocolError, httpx.ProtocolError),
    (httpcore.UnsupportedProtocol, httpx.UnsupportedProtocol),
)


@contextlib.contextmanager
def _client_errors() -> typing.Iterator[None]:
    """Re-raise httpcore failures as the matching httpx exceptions."""
    try:
        yield
    except (
        httpcore.TimeoutException,
        httpcore.NetworkError,
        httpcore.ProtocolError,
        httpcore.UnsupportedProtocol,
    ) as e:
        for core_error, client_error in _ERROR_MAP:
            if isinstance(e, core_error):
                raise client_error(str(e)) from e
        raise


class _ResponseStream(httpx.AsyncByteStream):
    def __init__(self, stream: typing.AsyncIterable[bytes]):
        self._stream = stream

    async def __aiter__(self) -> typing.AsyncIterator[bytes]:
        with _client_errors():
            async for part in self._stream:
                yield part

    async def aclose(self) -> None:
        if hasattr(self._stream, "aclose"):
            with _client_errors():
                await self._stream.aclose()


class SafeHTTPTransport(httpx.AsyncBaseTransport):
    """httpx transport over a connection pool that dials through RebindingSafeBackend."""

    def __init__(
        self,
        resolver: Resolver | None = None,
        backend: httpcore.AsyncNetworkBackend | None = None,
    ):
        self._pool = httpcore.AsyncConnectionPool(
            network_backend=RebindingSafeBackend(resolver=resolver, backend=backend),
        )

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        core_request = httpcore.Request(
            method=request.method,
            url=httpcore.URL(
                scheme=request.url.raw_scheme,
                host=request.url.raw_host,
                port=request.url.port,
                target=request.url.raw_path,
            ),
            headers=request.headers.raw,
            content=request.stream,
            extensions=request.extensions,
        )
        with _client_errors():
            response = await self._pool.handle_async_request(core_request)

        return httpx.Response(
            status_code=response.status,
            headers=response.headers,
            stream=_ResponseStream(response.stream),
            extensions=response.extensions,
        )

    async def aclose(self) -> None:
        await self._pool.aclose()


def safe_transport(
    resolver: Resolver | None = None,
    backend: httpcore.AsyncNetworkBackend | None = None,
) -> SafeHTTPTransport:
    """Build an httpx transport whose connections dial through the safe backend."""
    return SafeHTTPTransport(resolver=resolver, backend=backend)


def safe_async_client(
    settings: Settings | None = None,
    resolver: Resolver | None = None,
) -> httpx.AsyncClient:
    """Create the HTTP client shared by every outbound HTTP sender."""
    settings = settings or get_settings()
    return httpx.AsyncClient(
        transport=safe_transport(resolver),
        timeout=httpx.Timeout(
            settings.http_timeout_seconds,
            connect=settings.http_connect_timeout_seconds,
        ),
        follow_redirects=False,
    )
