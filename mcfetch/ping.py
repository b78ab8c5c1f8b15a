from __future__ import annotations

import asyncio
import json
import logging
import re
import struct
from enum import Enum
from typing import List, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, Field

from .address import ResolvedServerAddress, SrvLookup, dns_srv_lookup, resolve_server_address
from .batch import run_bounded
from .errors import FetchError, ValidationError

logger = logging.getLogger(__name__)

MAX_VARINT_BYTES = 5
STATUS_PROTOCOL_VERSION = -1
NEXT_STATE_STATUS = 1
READ_CHUNK = 4096
FORMATTING_CODE = re.compile("§.", re.DOTALL)


class IncompleteData(ValidationError):
    """The buffer ends before the value it is supposed to hold."""


def encode_varint(value: int) -> bytes:
    if not -(2 ** 31) <= value < 2 ** 31:
        raise ValidationError(f"VarInt out of int32 range: {value}")
    remaining = value & 0xFFFFFFFF
    out = bytearray()
    while True:
        byte = remaining & 0x7F
        remaining >>= 7
        if remaining:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def decode_varint(buffer: bytes, offset: int = 0) -> Tuple[int, int]:
    """Decode one VarInt at ``offset``; returns ``(value, next_offset)``."""

    result = 0
    for position in range(MAX_VARINT_BYTES):
        index = offset + position
        if index >= len(buffer):
            raise IncompleteData("Buffer ended inside a VarInt.")
        byte = buffer[index]
        result |= (byte & 0x7F) << (7 * position)
        if not byte & 0x80:
            result &= 0xFFFFFFFF
            if result >= 2 ** 31:
                result -= 2 ** 32
            return result, index + 1
    raise ValidationError("VarInt is longer than 5 bytes.")


def encode_string(text: str) -> bytes:
    data = text.encode("utf-8")
    return encode_varint(len(data)) + data


def frame(payload: bytes) -> bytes:
    return encode_varint(len(payload)) + payload


def handshake_packet(host: str, port: int, protocol_version: int = STATUS_PROTOCOL_VERSION) -> bytes:
    payload = (
        encode_varint(0)
        + encode_varint(protocol_version)
        + encode_string(host)
        + struct.pack(">H", port)
        + encode_varint(NEXT_STATE_STATUS)
    )
    return frame(payload)


def status_request_packet() -> bytes:
    return frame(encode_varint(0))


def strip_formatting(text: str) -> str:
    return FORMATTING_CODE.sub("", text)


class ServerVersion(BaseModel):
    name: str = ""
    protocol: int = -1


class PlayerSample(BaseModel):
    name: str
    id: str = ""


class Players(BaseModel):
    max: int = 0
    online: int = 0
    sample: List[PlayerSample] = Field(default_factory=list)


class Description(BaseModel):
    text: str = ""
    extra: List[Union[str, "Description"]] = Field(default_factory=list)

    @property
    def plain_text(self) -> str:
        parts = [strip_formatting(self.text)]
        for span in self.extra:
            parts.append(span.plain_text if isinstance(span, Description) else strip_formatting(span))
        return "".join(parts)


Description.model_rebuild()


class ModEntry(BaseModel):
    modid: str
    version: str = ""


class ModInfo(BaseModel):
    type: str = ""
    modList: List[ModEntry] = Field(default_factory=list)


class ServerInfo(BaseModel):
    version: ServerVersion = Field(default_factory=ServerVersion)
    players: Players = Field(default_factory=Players)
    description: Union[str, Description] = ""
    favicon: Optional[str] = None
    modinfo: Optional[ModInfo] = None

    @property
    def motd(self) -> str:
        if isinstance(self.description, Description):
            return self.description.plain_text
        return strip_formatting(self.description)


def parse_status_response(buffer: bytes) -> Optional[ServerInfo]:
    """Decode a framed status response, or return None until it is complete."""

    try:
        length, offset = decode_varint(buffer)
    except IncompleteData:
        return None
    if len(buffer) - offset < length:
        return None

    packet = bytes(buffer[offset:offset + length])
    packet_id, position = decode_varint(packet)
    if packet_id != 0:
        raise ValidationError(f"Unexpected status packet id {packet_id}.")
    text_length, position = decode_varint(packet, position)
    if len(packet) - position < text_length:
        raise ValidationError("Status payload is shorter than its declared length.")
    payload = packet[position:position + text_length].decode("utf-8")
    return ServerInfo.model_validate(json.loads(payload))


class PingState(str, Enum):
    IDLE = "idle"
    RESOLVING = "resolving"
    CONNECTING = "connecting"
    HANDSHAKING = "handshaking"
    AWAITING_RESPONSE = "awaiting_response"
    PARSED = "parsed"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


TERMINAL_STATES = {PingState.PARSED, PingState.TIMED_OUT, PingState.FAILED}


class ServerPinger:
    """One status query against one server.

    ``ping`` settles exactly once: the whole exchange runs under
    ``asyncio.wait_for``, so a late response after the deadline is never
    observed. Callers only see a ServerInfo or None; ``state`` and ``error``
    record why for logging.
    """

    def __init__(self, timeout: float = 5.0) -> None:
        self.timeout = timeout
        self.state = PingState.IDLE
        self.error: Optional[BaseException] = None

    def _settle(self, state: PingState, error: Optional[BaseException] = None) -> None:
        self.state = state
        self.error = error

    async def ping(self, resolved: ResolvedServerAddress) -> Optional[ServerInfo]:
        if self.state in TERMINAL_STATES:
            raise ValidationError("A ServerPinger can only be used once.")
        target = f"{resolved.connect_host}:{resolved.connect_port}"
        try:
            info = await asyncio.wait_for(self._exchange(resolved), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            self._settle(PingState.TIMED_OUT, exc)
            logger.debug("Ping %s timed out after %.1fs", target, self.timeout)
            return None
        except (OSError, FetchError, ValueError) as exc:
            self._settle(PingState.FAILED, exc)
            logger.debug("Ping %s failed: %s", target, exc)
            return None
        self._settle(PingState.PARSED)
        return info

    async def _exchange(self, resolved: ResolvedServerAddress) -> ServerInfo:
        self.state = PingState.CONNECTING
        reader, writer = await asyncio.open_connection(resolved.connect_host, resolved.connect_port)
        try:
            self.state = PingState.HANDSHAKING
            writer.write(handshake_packet(resolved.original_host, resolved.original_port))
            writer.write(status_request_packet())
            await writer.drain()
            self.state = PingState.AWAITING_RESPONSE
            return await self._read_status(reader)
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError as exc:
                logger.debug("Closing %s:%d: %s", resolved.connect_host, resolved.connect_port, exc)

    async def _read_status(self, reader: asyncio.StreamReader) -> ServerInfo:
        buffer = bytearray()
        while True:
            chunk = await reader.read(READ_CHUNK)
            if not chunk:
                # Stream finished: whatever is buffered has to decode now.
                info = parse_status_response(bytes(buffer))
                if info is None:
                    raise ValidationError("Connection closed before a complete status response.")
                return info
            buffer.extend(chunk)
            try:
                info = parse_status_response(bytes(buffer))
            except (FetchError, ValueError) as exc:
                logger.debug("Status response not decodable yet: %s", exc)
                continue
            if info is not None:
                return info


async def ping_server(
    address: str,
    timeout: float = 5.0,
    srv_lookup: Optional[SrvLookup] = dns_srv_lookup,
) -> Optional[ServerInfo]:
    pinger = ServerPinger(timeout=timeout)
    pinger.state = PingState.RESOLVING
    resolved = await resolve_server_address(address, srv_lookup)
    return await pinger.ping(resolved)


async def ping_many(
    addresses: Sequence[str],
    limit: int = 20,
    timeout: float = 5.0,
    srv_lookup: Optional[SrvLookup] = dns_srv_lookup,
) -> List[Tuple[str, Optional[ServerInfo]]]:
    """Ping every address; one (address, info) pair per input, in input order."""

    async def _ping_one(address: str) -> Optional[ServerInfo]:
        return await ping_server(address, timeout=timeout, srv_lookup=srv_lookup)

    results = await run_bounded(addresses, limit, _ping_one, label="server ping")
    return [(result.item, result.value if result.ok else None) for result in results]
