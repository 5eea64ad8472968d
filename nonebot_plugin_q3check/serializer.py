"""
查询结果序列化

输出格式是固定的：转义规则只处理 `"`、`\\`、换行，并删除 `\\r`，
其余字符原样输出，因此这里手工拼接而不使用 JSON 库。
"""

from __future__ import annotations

from typing import Iterable, Mapping, Optional

PLAYER_KEYS = ("slot", "score", "ping", "name")
"""每个玩家对象都会输出的字段"""
OPTIONAL_PLAYER_KEYS = ("lastmsg", "address", "qport", "rate", "guid", "playerid", "steamid")
"""记录中存在时才输出的字段"""


def escape(text: str) -> str:
    result = []
    for char in text:
        if char == '"':
            result.append('\\"')
        elif char == "\\":
            result.append("\\\\")
        elif char == "\n":
            result.append("\\n")
        elif char == "\r":
            continue
        else:
            result.append(char)
    return "".join(result)


def _pair(key: str, value: str) -> str:
    return f'"{escape(key)}":"{escape(value)}"'


def dump_player(player: Mapping[str, str]) -> str:
    pairs = [_pair(key, player.get(key, "")) for key in PLAYER_KEYS]
    pairs.extend(_pair(key, player[key]) for key in OPTIONAL_PLAYER_KEYS if key in player)
    return "{" + ",".join(pairs) + "}"


def dump_players(players: Iterable[Mapping[str, str]]) -> str:
    return "[" + ",".join(dump_player(player) for player in players) + "]"


def dump_status(
    server: Optional[Mapping[str, str]], players: Iterable[Mapping[str, str]]
) -> str:
    """
    将服务器变量与玩家列表序列化为文本。

    :params server: 服务器变量，为 None 时不输出 `server` 字段。
    :params players: 玩家记录列表。

    :returns: `{"server":{...},"players":[...]}` 或 `{"players":[...]}`
    """
    parts = []
    if server is not None:
        parts.append('"server":{' + ",".join(_pair(k, v) for k, v in server.items()) + "}")
    parts.append('"players":' + dump_players(players))
    return "{" + ",".join(parts) + "}"


def dump_response(text: str) -> str:
    return "{" + _pair("response", text) + "}"


def dump_map_changed(map_name: str) -> str:
    return '{"status":"success",' + _pair("message", f"Map changed to {map_name}") + "}"
