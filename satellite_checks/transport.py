from __future__ import annotations

import asyncio
import json
import ssl
from dataclasses import dataclass
from typing import Any

import structlog

from satellite_checks.config import ConfigurationError, DispatcherConfig, TlsSettings, resolve_authkey
from satellite_checks.models import Location


logger = structlog.get_logger(__name__)

# One JSON document per line in each direction.
MAX_RESPONSE_BYTES = 4 * 1024 * 1024
_CLOSE_TIMEOUT_SECONDS = 2.0


class TransportError(Exception):
    """Any failure talking to a satellite: connect, TLS, timeout or a malformed response."""

    def __init__(self, hostname: str, cause: str) -> None:
        super().__init__(f"{hostname}: {cause}")
        self.hostname = hostname
        self.cause = cause


@dataclass(frozen=True)
class LocationResponse:
    status: str
    message: str | None
    data: Any

    @property
    def ok(self) -> bool:
        return self.status == "ok"


def build_ssl_context(tls: TlsSettings) -> ssl.SSLContext:
    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    try:
        if tls.verify == "none":
            ctx.check_hostname = False
            ctx.verify_mode = ssl.CERT_NONE
        else:
            ctx.check_hostname = True
            ctx.verify_mode = ssl.CERT_REQUIRED
            if tls.ca_file or tls.ca_path:
                ctx.load_verify_locations(cafile=tls.ca_file, capath=tls.ca_path)
            else:
                ctx.load_default_certs()
        if tls.cert_file:
            ctx.load_cert_chain(certfile=tls.cert_file, keyfile=tls.key_file)
    except (OSError, ssl.SSLError) as exc:
        raise ConfigurationError(f"cannot load TLS material: {type(exc).__name__}: {exc}") from exc
    return ctx


def encode_request(authkey: str, command: Any) -> bytes:
    payload = {"action": "exec", "authkey": authkey, "data": command}
    return json.dumps(payload, ensure_ascii=False).encode("utf-8") + b"\n"


def parse_response(raw: bytes) -> LocationResponse:
    text = raw.decode("utf-8", errors="replace").strip()
    if not text:
        raise ValueError("empty response")
    obj = json.loads(text)
    if not isinstance(obj, dict):
        raise ValueError("response is not a JSON object")
    status = obj.get("status")
    if not isinstance(status, str) or not status:
        raise ValueError("response has no status")
    message = obj.get("message")
    return LocationResponse(
        status=status,
        message=str(message) if message is not None else None,
        data=obj.get("data"),
    )


class SatelliteClient:
    """Sends one exec request per call; connections are never reused."""

    def __init__(self, config: DispatcherConfig, ssl_context: ssl.SSLContext | None = None) -> None:
        self.config = config
        self.ssl_context = ssl_context if ssl_context is not None else build_ssl_context(config.tls)

    async def call(self, location: Location, command: Any) -> LocationResponse:
        authkey = resolve_authkey(location, self.config)
        if authkey is None:
            raise TransportError(location.hostname, "no authkey available")

        timeout = float(self.config.timeout_seconds)
        logger.debug("satellite call", hostname=location.hostname, ipaddr=location.ipaddr, port=self.config.port)
        try:
            raw = await asyncio.wait_for(self._exchange(location, encode_request(authkey, command)), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise TransportError(location.hostname, f"timeout after {timeout:g}s") from exc
        except ssl.SSLError as exc:
            raise TransportError(location.hostname, f"TLS error: {exc}") from exc
        except OSError as exc:
            raise TransportError(location.hostname, f"connection failed: {type(exc).__name__}: {exc}") from exc
        except ValueError as exc:
            # StreamReader.readline reports an oversized line as ValueError.
            raise TransportError(location.hostname, f"malformed response: {exc}") from exc

        try:
            return parse_response(raw)
        except ValueError as exc:
            raise TransportError(location.hostname, f"malformed response: {exc}") from exc

    async def _exchange(self, location: Location, request: bytes) -> bytes:
        reader, writer = await asyncio.open_connection(
            host=location.ipaddr,
            port=int(self.config.port),
            ssl=self.ssl_context,
            server_hostname=location.hostname,
            limit=MAX_RESPONSE_BYTES,
        )
        try:
            writer.write(request)
            await writer.drain()
            raw = await reader.readline()
        finally:
            writer.close()
            try:
                await asyncio.wait_for(writer.wait_closed(), timeout=_CLOSE_TIMEOUT_SECONDS)
            except Exception:
                pass
        if not raw:
            raise ConnectionError("connection closed without a response")
        return raw
