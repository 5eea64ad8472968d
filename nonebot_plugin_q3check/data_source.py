"""
id Tech 3 系游戏服务器查询

支持 Medal of Honor 与 Call of Duty 两种 UDP 查询协议：
`getinfo` / `getstatus` 状态查询，以及需要密码的 `rcon` 远程控制台命令。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import socket
from typing import Callable, Optional

from nonebot import logger

from .parser import (
    InfoLayout,
    StatusLayout,
    parse_info_players,
    parse_key_values,
    parse_status_players,
    sanitize_command,
)
from .resolver import DnsCache, ResolutionError
from .serializer import dump_map_changed, dump_response, dump_status

ENCODING = "latin-1"
"""服务器文本编码，按字节原样映射"""
BUFFER_SIZE = 4096
"""单个 UDP 响应包的最大长度"""


def encode_text(text: str) -> bytes:
    """
    将请求文本编码为字节。

    能用 latin-1 表示时逐字节写入，否则整体使用 UTF-8，
    不会把字符替换成 `?`。
    """
    try:
        return text.encode(ENCODING)
    except UnicodeEncodeError:
        return text.encode("utf-8")


class Protocols(Enum):
    """
    已支持的查询协议

    - `MEDAL_OF_HONOR`：Medal of Honor: Allied Assault 及其资料片
    - `CALL_OF_DUTY`：Call of Duty 系列（包括 Steam 版服务器）
    """

    def __str__(self) -> str:
        return str(self.name)

    MEDAL_OF_HONOR = 1
    """Medal of Honor，数据包以 `\\xff\\xff\\xff\\xff\\x02` 开头"""

    CALL_OF_DUTY = 2
    """Call of Duty，数据包以 `\\xff\\xff\\xff\\xff` 开头，支持 getinfo"""


class QueryStatus(Enum):
    """
    查询失败的原因

    - `INVALID_PROTOCOL`：协议编号未注册
    - `INVALID_PORT`：端口不在 1-65535 范围内
    - `NULL_INPUT`：未提供主机或命令
    - `EMPTY_COMMAND`：清理后命令为空
    - `INVALID_COMMAND`：该协议不支持此命令
    - `RESOLUTION_ERROR`：主机名解析失败
    - `TRANSPORT_ERROR`：套接字创建、发送、接收失败或超时
    - `INVALID_RESPONSE`：响应为空或缺少预期的响应头
    - `UNSUPPORTED_COMMAND`：命令可以识别但当前没有处理
    - `UNEXPECTED_FAILURE`：其他未预料的异常
    """

    def __str__(self) -> str:
        return str(self.name)

    INVALID_PROTOCOL = -1
    INVALID_PORT = -2
    NULL_INPUT = -3
    EMPTY_COMMAND = -4
    INVALID_COMMAND = -5
    RESOLUTION_ERROR = -6
    TRANSPORT_ERROR = -7
    INVALID_RESPONSE = -8
    UNSUPPORTED_COMMAND = -9
    UNEXPECTED_FAILURE = -10


class QueryError(Exception):
    def __init__(self, status: QueryStatus, reason: str, raw: Optional[str] = None) -> None:
        super().__init__(reason)
        self.status = status
        self.reason = reason
        self.raw = raw

    def render(self) -> str:
        if self.raw is None:
            return f"error={self.reason}"
        return f"error={self.reason};raw={self.raw}"


class ResultKind(Enum):
    def __str__(self) -> str:
        return str(self.name)

    RAW = 0
    """去掉响应头后的原始文本"""
    STATUS = 1
    """服务器变量与玩家列表（getinfo / getstatus）"""
    PLAYERS = 2
    """仅玩家列表（rcon status）"""
    RESPONSE = 3
    """其他 rcon 命令的文本输出"""
    MAP_CHANGED = 4
    """rcon map 的固定确认"""


@dataclass
class QueryResult:
    kind: ResultKind
    command: str
    text: str = ""
    """RAW / RESPONSE 的文本，MAP_CHANGED 的地图名"""
    server: Optional[dict[str, str]] = None
    players: list[dict[str, str]] = field(default_factory=list)

    def render(self) -> str:
        if self.kind is ResultKind.STATUS:
            return dump_status(self.server or {}, self.players)
        if self.kind is ResultKind.PLAYERS:
            return dump_status(None, self.players)
        if self.kind is ResultKind.RESPONSE:
            return dump_response(self.text)
        if self.kind is ResultKind.MAP_CHANGED:
            return dump_map_changed(self.text)
        return self.text


@dataclass(frozen=True)
class ProtocolDescriptor:
    protocol: Protocols
    prefix: bytes
    """所有请求包的前缀"""
    default_port: int
    info_layout: InfoLayout
    status_layouts: dict[bool, StatusLayout]
    """rcon status 表格布局，键为是否 Steam 版"""
    queries: dict[str, str] = field(default_factory=dict)
    """支持的查询命令及其响应头"""
    rcon_marker: str = "print"


MOH_STATUS_LAYOUT = StatusLayout(
    ("slot", "score", "ping", "name", "lastmsg", "address", "qport", "rate")
)
COD_STATUS_LAYOUT = StatusLayout(
    ("slot", "score", "ping", "guid", "name", "lastmsg", "address", "qport", "rate"),
    caret_reset=True,
)
COD_STEAM_STATUS_LAYOUT = StatusLayout(
    ("slot", "score", "ping", "playerid", "steamid", "name", "lastmsg", "address", "qport", "rate"),
    caret_reset=True,
)

PROTOCOLS: dict[int, ProtocolDescriptor] = {
    Protocols.MEDAL_OF_HONOR.value: ProtocolDescriptor(
        protocol=Protocols.MEDAL_OF_HONOR,
        prefix=b"\xff\xff\xff\xff\x02",
        default_port=12203,
        info_layout=InfoLayout(("slot", "name"), {"score": "0", "ping": "0"}),
        status_layouts={False: MOH_STATUS_LAYOUT, True: MOH_STATUS_LAYOUT},
        queries={"getstatus": "statusResponse"},
    ),
    Protocols.CALL_OF_DUTY.value: ProtocolDescriptor(
        protocol=Protocols.CALL_OF_DUTY,
        prefix=b"\xff\xff\xff\xff",
        default_port=28960,
        info_layout=InfoLayout(("score", "ping", "name"), {"slot": "0"}),
        status_layouts={False: COD_STATUS_LAYOUT, True: COD_STEAM_STATUS_LAYOUT},
        queries={"getinfo": "infoResponse", "getstatus": "statusResponse"},
    ),
}
"""已注册的协议，键为协议编号"""


def send_udp_query(ip: str, port: int, payload: bytes, timeout: int = 5000) -> bytes:
    """
    向服务器发送一个 UDP 数据包并等待一个响应包。

    :params ip: 服务器 IPv4 地址。
    :params port: 服务器端口。
    :params payload: 完整的请求数据包。
    :params timeout: 接收超时时间（毫秒），默认 5000。

    :returns: 响应数据，截断到第一个 NUL 字节。

    :raises QueryError: 套接字创建、发送、接收失败或超时。
    """
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    except OSError as e:
        raise QueryError(QueryStatus.TRANSPORT_ERROR, "Socket creation failed") from e

    try:
        sock.settimeout(timeout / 1000)
        try:
            sock.sendto(payload, (ip, port))
        except OSError as e:
            raise QueryError(QueryStatus.TRANSPORT_ERROR, "Send failed") from e
        try:
            data, _ = sock.recvfrom(BUFFER_SIZE)
        except TimeoutError as e:
            raise QueryError(QueryStatus.TRANSPORT_ERROR, "Receive timed out") from e
        except OSError as e:
            raise QueryError(QueryStatus.TRANSPORT_ERROR, "Receive failed") from e
    finally:
        sock.close()

    return data.split(b"\x00", 1)[0]


Transport = Callable[[str, int, bytes, int], bytes]


@dataclass(frozen=True)
class Request:
    command: str
    payload: bytes
    marker: str
    timeout: int


class ProtocolHandler:
    """单个协议的请求构造与响应解析"""

    def __init__(
        self,
        descriptor: ProtocolDescriptor,
        transport: Transport = send_udp_query,
        query_timeout: int = 1000,
        map_timeout: int = 2000,
    ) -> None:
        self.descriptor = descriptor
        self.transport = transport
        self.query_timeout = query_timeout
        self.map_timeout = map_timeout

    def build_query(self, command: str, rcon_password: str = "") -> Request:
        """
        根据命令构造请求数据包。

        :params command: `getinfo`、`getstatus` 或 `rcon <命令>`。
        :params rcon_password: rcon 密码，原样写入数据包。

        :raises QueryError: 该协议不支持此命令。
        """
        cmd = sanitize_command(command)
        prefix = self.descriptor.prefix
        if cmd in self.descriptor.queries:
            return Request(
                cmd,
                prefix + encode_text(cmd),
                self.descriptor.queries[cmd],
                self.query_timeout,
            )
        if cmd.startswith("rcon "):
            text = f'rcon "{rcon_password}" {cmd[5:]}'
            timeout = self.map_timeout if cmd.startswith("rcon map ") else self.query_timeout
            return Request(
                cmd,
                prefix + encode_text(text),
                self.descriptor.rcon_marker,
                timeout,
            )
        raise QueryError(QueryStatus.INVALID_COMMAND, "Invalid command")

    def process(
        self, ip: str, port: int, command: str, rcon_password: str = "", raw: bool = False
    ) -> QueryResult:
        """
        执行一次查询。

        :params ip: 服务器 IPv4 地址。
        :params port: 服务器端口。
        :params command: 查询命令。
        :params rcon_password: rcon 密码。
        :params raw: 为 True 时返回去掉响应头后的原始文本。

        :raises QueryError: 查询失败。
        """
        request = self.build_query(command, rcon_password)
        cmd = request.command
        logger.debug(f"{self.descriptor.protocol} {ip}:{port} <- {cmd}")

        response = self.transport(ip, port, request.payload, request.timeout).decode(ENCODING)
        if not response:
            raise QueryError(QueryStatus.INVALID_RESPONSE, "Empty response from server")

        if cmd.startswith("rcon map "):
            return QueryResult(ResultKind.MAP_CHANGED, cmd, text=cmd[9:])

        body = self._strip_envelope(response, request.marker)

        if cmd in self.descriptor.queries:
            if raw:
                return QueryResult(ResultKind.RAW, cmd, text=body)
            return QueryResult(
                ResultKind.STATUS,
                cmd,
                server=parse_key_values(body),
                players=parse_info_players(body, self.descriptor.info_layout),
            )

        # build_query 只放行查询命令与 rcon 命令
        if cmd == "rcon status":
            if raw:
                return QueryResult(ResultKind.RAW, cmd, text=body)
            return QueryResult(
                ResultKind.PLAYERS,
                cmd,
                players=parse_status_players(body, self.descriptor.status_layouts),
            )
        body = body.lstrip("\n")
        return QueryResult(ResultKind.RAW if raw else ResultKind.RESPONSE, cmd, text=body)

    @staticmethod
    def _strip_envelope(response: str, marker: str) -> str:
        pos = response.find(marker)
        if pos == -1:
            raise QueryError(QueryStatus.INVALID_RESPONSE, "Invalid server response", response)
        body = response[pos + len(marker) :]
        if not body:
            raise QueryError(
                QueryStatus.INVALID_RESPONSE, "Empty response after header removal", response
            )
        return body


class GameServerQuery:
    """
    查询入口：校验参数、解析主机名、选择协议处理器。

    同一个实例可在多个线程中使用，DNS 缓存在调用之间共享。
    """

    def __init__(
        self,
        dns_cache: Optional[DnsCache] = None,
        transport: Transport = send_udp_query,
        query_timeout: int = 1000,
        map_timeout: int = 2000,
    ) -> None:
        self.dns_cache = dns_cache or DnsCache()
        self.handlers = {
            protocol_id: ProtocolHandler(descriptor, transport, query_timeout, map_timeout)
            for protocol_id, descriptor in PROTOCOLS.items()
        }

    def execute(
        self,
        protocol_id: int,
        raw: bool,
        host: Optional[str],
        port: int,
        command: Optional[str],
        rcon_password: Optional[str] = None,
    ) -> QueryResult:
        """
        执行查询并返回结构化结果。

        :params protocol_id: 协议编号，见 `Protocols`。
        :params raw: 是否返回原始文本。
        :params host: 服务器主机名或 IPv4 地址。
        :params port: 服务器端口。
        :params command: 查询命令。
        :params rcon_password: rcon 密码，默认为空。

        :raises QueryError: 参数错误或查询失败。
        """
        if host is None or command is None:
            raise QueryError(QueryStatus.NULL_INPUT, "Null input parameters")
        handler = self.handlers.get(protocol_id)
        if handler is None:
            raise QueryError(QueryStatus.INVALID_PROTOCOL, "Invalid protocol ID")
        if not 1 <= port <= 65535:
            raise QueryError(QueryStatus.INVALID_PORT, "Invalid port")
        cmd = sanitize_command(command)
        if not cmd:
            raise QueryError(QueryStatus.EMPTY_COMMAND, "Empty command")

        try:
            ip = self.dns_cache.resolve(host)
        except ResolutionError as e:
            raise QueryError(QueryStatus.RESOLUTION_ERROR, str(e)) from e

        return handler.process(ip, port, cmd, rcon_password or "", raw)

    def query(
        self,
        protocol_id: int,
        raw: bool,
        host: Optional[str],
        port: int,
        command: Optional[str],
        rcon_password: Optional[str] = None,
    ) -> str:
        """
        执行查询并返回文本结果，失败时返回 `error=<原因>`，不会抛出异常。
        """
        try:
            return self.execute(protocol_id, raw, host, port, command, rcon_password).render()
        except QueryError as e:
            logger.warning(f"查询 {host}:{port} 失败: {e.status} {e.reason}")
            return e.render()
        except Exception:
            logger.exception(f"查询 {host}:{port} 时发生未知错误")
            return QueryError(QueryStatus.UNEXPECTED_FAILURE, "Unexpected exception").render()


default_query = GameServerQuery()
"""进程内共享的默认实例"""


def query(
    protocol_id: int,
    raw: bool,
    host: Optional[str],
    port: int,
    command: Optional[str],
    rcon_password: Optional[str] = None,
) -> str:
    """使用进程内共享的默认实例执行查询，见 `GameServerQuery.query`"""
    return default_query.query(protocol_id, raw, host, port, command, rcon_password)
