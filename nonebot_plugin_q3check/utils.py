import asyncio
import html
import re
import traceback
from pathlib import Path
from typing import Optional

from nonebot import logger, require

from .configs import VERSION, game_query, lang, lang_data, message_type
from .data_source import PROTOCOLS, Protocols, QueryError, QueryResult, ResultKind
from .resolver import is_domain, is_ipv4

require("nonebot_plugin_alconna")
require("nonebot_plugin_uninfo")
from nonebot_plugin_alconna import Image, SupportScope, Text
from nonebot_plugin_uninfo import Uninfo

COLOR_PATTERN = re.compile(r"\^[0-9A-Za-z]")

COLORS_HTML = {
    "0": "000000",
    "1": "DA0120",
    "2": "00B906",
    "3": "E8FF19",
    "4": "170BDB",
    "5": "23C2C6",
    "6": "E201DB",
    "7": "FFFFFF",
    "8": "CA7C27",
    "9": "757575",
}
"""`^0`-`^9` 颜色代码对应的 HTML 颜色"""

PROTOCOL_ALIASES = {
    "1": Protocols.MEDAL_OF_HONOR,
    "moh": Protocols.MEDAL_OF_HONOR,
    "mohaa": Protocols.MEDAL_OF_HONOR,
    "2": Protocols.CALL_OF_DUTY,
    "cod": Protocols.CALL_OF_DUTY,
}


def handle_exception(e):
    error_message = str(e)
    logger.error(traceback.format_exc())
    return Text(f"[CrashHandle]{error_message}\n>>更多信息详见日志文件<<")


def get_language() -> str:
    return lang


def change_language_to(language: str):
    global lang

    try:
        _ = lang_data[language]
    except KeyError:
        return f"No language named '{language}'!"
    else:
        if language == lang:
            return f"The language is already '{language}'!"
        lang = language
        return f"Change to '{language}' success!"


def parse_host(host_name: str) -> tuple[str, int]:
    """
    解析主机名（可选端口）。

    该函数尝试从主机名中提取地址和端口号。如果主机名中未指定端口，
    则默认端口号为0。

    :params host_name: 主机名，可能包含端口。

    :returns: 一个元组，包含两个元素：
    - 第一个元素是主机的地址
    - 第二个元素是主机的端口号，如果主机名中未指定端口，则为0。
    """
    pattern = r"(?:\[(.+?)\]|(.+?))(?:[:：](\d+))?$"
    if not (match := re.match(pattern, host_name)):
        return host_name, 0

    address = match[1] or match[2]
    port = int(match[3]) if match[3] else 0
    return address, port


def parse_protocol(name: Optional[str], default: int) -> Optional[Protocols]:
    """
    将协议名称或编号转换为 `Protocols`。

    :params name: `moh`、`cod`、`1`、`2` 等，为空时使用默认协议。
    :params default: 默认协议编号。

    :returns: 对应的协议，无法识别时返回 None。
    """
    if not name:
        name = str(default)
    return PROTOCOL_ALIASES.get(name.strip().lower())


def is_validity_address(address: str) -> bool:
    """判断给定的地址是否为有效的域名或IPv4地址。"""
    return is_domain(address) or is_ipv4(address)


def strip_colors(text: str) -> str:
    """去除 `^N` 颜色代码"""
    return COLOR_PATTERN.sub("", text)


def colors_to_html(text: str) -> str:
    """
    将带有 `^N` 颜色代码的文本转换为 HTML。

    :params text: 原始文本。

    :returns: 带有颜色的 HTML 字符串。
    """
    result = ""
    opened = False
    pos = 0
    for match in COLOR_PATTERN.finditer(text):
        result += html.escape(text[pos : match.start()])
        pos = match.end()
        if opened:
            result += "</span>"
            opened = False
        if color := COLORS_HTML.get(match.group()[1]):
            result += f'<span style="color:#{color};">'
            opened = True
    result += html.escape(text[pos:])
    if opened:
        result += "</span>"
    return result


def format_player(player: dict[str, str]) -> str:
    name = strip_colors(player["name"])
    texts = lang_data[lang]
    return f"{name} ({texts['score']} {player['score']}, {texts['ping']} {player['ping']})"


async def build_result(
    result: QueryResult,
    address: str,
    port: int,
    protocol: Protocols,
    type: int = 0,
) -> list[Image | Text]:
    """
    根据查询结果构建消息。

    :params result: 查询结果。
    :params address: 用户输入的服务器地址。
    :params port: 服务器端口。
    :params protocol: 查询使用的协议。
    :params type: 结果类型，0 为图片，1 为文本，仅对状态查询生效。
    """
    texts = lang_data[lang]
    if result.kind is ResultKind.MAP_CHANGED:
        return [Text(f"{texts['map_changed']}{result.text}")]
    if result.kind is ResultKind.RESPONSE:
        return [Text(f"{texts['response']}\n{strip_colors(result.text).strip()}")]
    if result.kind is ResultKind.RAW:
        return [Text(result.text)]
    if result.kind is ResultKind.PLAYERS:
        lines = [
            f"{p['slot']}. {format_player(p)} {p.get('address', '')}".rstrip()
            for p in result.players
        ]
        return [Text(f"{texts['players']}{len(lines)}\n" + "\n".join(lines))]

    server = result.server or {}
    hostname = server.get("sv_hostname", server.get("hostname", address))
    version = server.get("shortversion", server.get("version", ""))
    max_players = server.get("sv_maxclients", "?")

    if type == 0:
        data = {
            "hostname": colors_to_html(hostname),
            "map": server.get("mapname", ""),
            "gametype": server.get("g_gametype", ""),
            "version": version,
            "protocol": str(protocol),
            "address": address,
            "port": port,
            "players": f"{len(result.players)}/{max_players}",
            "player_list": [
                {
                    "name": colors_to_html(p["name"]),
                    "score": p["score"],
                    "ping": p["ping"],
                }
                for p in result.players
            ],
            "lang": texts,
            "VERSION": VERSION,
        }
        require("nonebot_plugin_htmlrender")
        from nonebot_plugin_htmlrender import template_to_pic

        template_dir = str(Path(__file__).parent / "templates")
        pic = await template_to_pic(
            template_path=template_dir,
            template_name="default.html",
            templates={"data": data},
        )
        return [Image(raw=pic)]

    message = (
        f"{texts['hostname']}{strip_colors(hostname)}"
        f"\n{texts['protocol']}{protocol}"
        f"\n{texts['address']}{address}"
        f"\n{texts['port']}{port}"
    )
    if version:
        message += f"\n{texts['version']}{version}"
    if "mapname" in server:
        message += f"\n{texts['map']}{server['mapname']}"
    if "g_gametype" in server:
        message += f"\n{texts['gametype']}{server['g_gametype']}"
    message += f"\n{texts['players']}{len(result.players)}/{max_players}"
    if result.players:
        message += f"\n{texts['player_list']}\n" + "\n".join(
            format_player(p) for p in result.players
        )
    return [Text(message)]


async def get_message_list(
    host: str,
    protocol: Protocols,
    command: str,
    rcon_password: str = "",
) -> list[Image | Text]:
    """
    查询服务器并返回消息列表。

    :params host: 用户输入的地址，可带端口。
    :params protocol: 查询协议。
    :params command: 查询命令。
    :params rcon_password: rcon 密码。

    :returns: 包含消息的列表。
    """
    address, port = parse_host(host)
    if not port:
        port = PROTOCOLS[protocol.value].default_port

    try:
        result = await asyncio.to_thread(
            game_query.execute, protocol.value, False, address, port, command, rcon_password
        )
    except QueryError as e:
        logger.warning(f"{protocol} {address}:{port} {command}: {e.render()}")
        return [Text(lang_data[lang][str(e.status)])]

    return await build_result(result, address, port, protocol, message_type)


def is_qbot(session: Uninfo) -> bool:
    """判断bot是否为qq官bot

    参数:
        session: Uninfo

    返回:
        bool: 是否为官bot
    """
    return session.scope == SupportScope.qq_api
