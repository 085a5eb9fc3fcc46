"""
Engine operation protocol.

This module defines the request, response and notification envelopes
exchanged with the checkpoint/restore engine worker, their protobuf
encoding, and the message framing of the worker's SOCK_SEQPACKET channel,
where one envelope is exactly one message.
"""

import socket
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Optional

from google.protobuf.message import DecodeError, EncodeError

from live_migration.errors import EngineUnavailable, ProtocolViolation

from . import rpc


MAX_MESSAGE_SIZE = 64 * 1024


class RequestKind(Enum):
    """Operation kinds understood by the engine."""
    DUMP = "dump"
    RESTORE = "restore"
    PRE_DUMP = "pre-dump"
    PAGE_SERVER = "page-server"
    PAGE_SERVER_CHILD = "page-server-child"
    LAZY_PAGES = "lazy-pages"
    NOTIFY = "notify"

    @property
    def wire_type(self) -> int:
        return _WIRE_TYPES[self]

    @classmethod
    def from_wire(cls, wire_type: int) -> "RequestKind":
        """
        Raises:
            ProtocolViolation: If the wire type is not one this side issues
        """
        for kind, value in _WIRE_TYPES.items():
            if value == wire_type:
                return kind
        raise ProtocolViolation(f"Unknown response kind: {wire_type}")


_WIRE_TYPES = {
    RequestKind.DUMP: rpc.DUMP,
    RequestKind.RESTORE: rpc.RESTORE,
    RequestKind.PRE_DUMP: rpc.PRE_DUMP,
    RequestKind.PAGE_SERVER: rpc.PAGE_SERVER,
    RequestKind.PAGE_SERVER_CHILD: rpc.PAGE_SERVER_CHLD,
    RequestKind.LAZY_PAGES: rpc.LAZY_PAGES,
    RequestKind.NOTIFY: rpc.NOTIFY,
}


@dataclass(frozen=True)
class PageServerInfo:
    """Page-transfer wiring, or the auxiliary process the engine started."""
    fd: Optional[int] = None
    address: Optional[str] = None
    port: Optional[int] = None
    pid: Optional[int] = None


@dataclass(frozen=True)
class EngineOptions:
    """
    Options bag for one request.

    Descriptor fields are raw numbers in the caller's process; they must
    stay open until the call that carries them has returned.
    """
    images_dir_fd: Optional[int] = None
    pid: Optional[int] = None
    log_level: Optional[int] = None
    log_file: Optional[str] = None
    page_server: Optional[PageServerInfo] = None
    track_mem: Optional[bool] = None
    lazy_pages: Optional[bool] = None
    parent_img: Optional[str] = None
    notify_scripts: Optional[bool] = None
    leave_running: Optional[bool] = None
    tcp_established: Optional[bool] = None
    shell_job: Optional[bool] = None
    ext_unix_sk: Optional[bool] = None
    file_locks: Optional[bool] = None

    def fill(self, opts) -> None:
        """Copy set fields into a criu_opts message."""
        opts.SetInParent()
        for item in fields(self):
            value = getattr(self, item.name)
            if value is None:
                continue
            if isinstance(value, PageServerInfo):
                _fill_page_server(opts.ps, value)
            else:
                setattr(opts, item.name, value)


@dataclass(frozen=True)
class OperationRequest:
    """One request envelope: an operation kind and its options."""
    kind: RequestKind
    options: EngineOptions = field(default_factory=EngineOptions)
    notify_success: Optional[bool] = None

    def to_message(self):
        """Build the criu_req message for this request."""
        req = rpc.criu_req()
        req.type = self.kind.wire_type
        if self.notify_success is not None:
            req.notify_success = self.notify_success
        else:
            self.options.fill(req.opts)
        return req


def acknowledgment() -> OperationRequest:
    """Request telling the engine the pending notification was handled."""
    return OperationRequest(kind=RequestKind.NOTIFY, notify_success=True)


@dataclass
class Notification:
    """A named pausing point reported in the middle of an operation."""
    point: str
    pid: Optional[int] = None


@dataclass
class OperationResponse:
    """One response envelope."""
    kind: RequestKind
    success: bool
    error_code: int = 0
    error_message: str = ""
    notification: Optional[Notification] = None
    page_server: Optional[PageServerInfo] = None
    restored_pid: Optional[int] = None

    @property
    def is_notification(self) -> bool:
        return self.kind is RequestKind.NOTIFY

    @classmethod
    def from_message(cls, resp) -> "OperationResponse":
        """
        Build a response from a parsed criu_resp message.

        Args:
            resp: criu_resp message

        Returns:
            OperationResponse

        Raises:
            ProtocolViolation: If required fields are missing or the kind is unknown
        """
        if not resp.IsInitialized():
            raise ProtocolViolation(
                f"Response is missing required fields: {', '.join(resp.FindInitializationErrors())}"
            )
        kind = RequestKind.from_wire(resp.type)

        notification = None
        if resp.HasField("notify"):
            notification = Notification(point=resp.notify.script, pid=_optional(resp.notify, "pid"))
        if kind is RequestKind.NOTIFY and notification is None and resp.success:
            raise ProtocolViolation("Notify response carries no notification")

        page_server = None
        if resp.HasField("ps"):
            page_server = PageServerInfo(
                fd=_optional(resp.ps, "fd"),
                address=_optional(resp.ps, "address"),
                port=_optional(resp.ps, "port"),
                pid=_optional(resp.ps, "pid")
            )

        return cls(
            kind=kind,
            success=resp.success,
            error_code=resp.cr_errno,
            error_message=resp.cr_errmsg,
            notification=notification,
            page_server=page_server,
            restored_pid=resp.restore.pid if resp.HasField("restore") else None
        )


def _optional(message, name: str):
    return getattr(message, name) if message.HasField(name) else None


def _fill_page_server(ps, info: PageServerInfo) -> None:
    ps.SetInParent()
    for name in ("fd", "address", "port", "pid"):
        value = getattr(info, name)
        if value is not None:
            setattr(ps, name, value)


def encode_request(request: OperationRequest) -> bytes:
    """
    Serialize a request envelope.

    Raises:
        ProtocolViolation: If the request cannot be serialized
    """
    try:
        return request.to_message().SerializeToString()
    except EncodeError as e:
        raise ProtocolViolation(f"Cannot encode {request.kind.value} request: {e}")


def decode_response(payload: bytes) -> OperationResponse:
    """
    Deserialize a response envelope.

    Raises:
        ProtocolViolation: If the payload is not a complete criu_resp
    """
    resp = rpc.criu_resp()
    try:
        resp.ParseFromString(payload)
    except DecodeError as e:
        raise ProtocolViolation(f"Malformed response: {e}")
    return OperationResponse.from_message(resp)


def send_message(sock: socket.socket, payload: bytes) -> None:
    """Send one envelope as one message."""
    if len(payload) > MAX_MESSAGE_SIZE:
        raise ProtocolViolation(f"Envelope too large: {len(payload)} bytes")
    try:
        sock.send(payload)
    except OSError as e:
        raise EngineUnavailable(f"Failed to send to engine: {e}")


def recv_message(sock: socket.socket) -> bytes:
    """
    Receive one envelope.

    Raises:
        EngineUnavailable: If the channel is closed or unreadable
        ProtocolViolation: If the message did not fit in MAX_MESSAGE_SIZE
    """
    try:
        data, _, flags, _ = sock.recvmsg(MAX_MESSAGE_SIZE)
    except OSError as e:
        raise EngineUnavailable(f"Failed to read from engine: {e}")
    if not data:
        raise EngineUnavailable("Engine channel closed")
    if flags & socket.MSG_TRUNC:
        raise ProtocolViolation(f"Engine message exceeds {MAX_MESSAGE_SIZE} bytes")
    return data
