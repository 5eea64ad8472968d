"""
id Tech 3 系服务器响应解析

服务器返回的都是纯文本：`getinfo`/`getstatus` 返回 `\\key\\value` 形式的变量块
以及每行一个玩家，`rcon status` 返回给管理员看的对齐表格。
本模块只做文本到 dict 的转换，不涉及网络。
"""

from __future__ import annotations

from dataclasses import dataclass, field
import re

_DIGITS = re.compile(r"[0-9]+")
_SCORE = re.compile(r"-?[0-9]+")

STEAM_HEADER = "num score ping playerid steamid name"
"""Steam 版服务器 rcon status 表头"""
GUID_HEADER = "num score ping guid name"
"""非 Steam 版服务器 rcon status 表头"""

STATUS_SKIP_MARKERS = (
    "map:",
    "num score ping",
    "----",
    "hostname:",
    "version :",
    "udp/ip  :",
    "os      :",
    "type    :",
)
"""rcon status 中不属于玩家行的表头/分隔行"""


@dataclass(frozen=True)
class InfoLayout:
    """`getstatus` 玩家行的列布局"""

    columns: tuple[str, ...]
    """按顺序出现的列，`name` 列必须带双引号"""
    defaults: dict[str, str] = field(default_factory=dict)
    """协议中不存在、需要补齐的字段"""


@dataclass(frozen=True)
class StatusLayout:
    """`rcon status` 表格的列布局"""

    columns: tuple[str, ...]
    """按顺序出现的列，最后一列取行的剩余部分"""
    caret_reset: bool = False
    """名字列中有以 `^7` 结尾的单词时，是否在最后一个这样的单词处截断名字"""

    @property
    def name_index(self) -> int:
        return self.columns.index("name")

    @property
    def field_count(self) -> int:
        return len(self.columns)


def trim(line: str) -> str:
    return line.strip()


def sanitize_command(command: str) -> str:
    """
    删除命令中的 `;`、`\\r`、`\\n`，防止在同一个数据包里夹带第二条命令。

    :params command: 原始命令文本。

    :returns: 清理后的命令，重复调用结果不变。
    """
    return command.replace(";", "").replace("\r", "").replace("\n", "")


def tokenize(line: str) -> list[str]:
    """
    按空格切分一行文本，双引号括起的部分作为一个整体，引号保留在结果中。

    未闭合的引号会把该行剩余部分都归入最后一个片段。

    :params line: 需要切分的文本。

    :returns: 片段列表，空文本返回空列表。
    """
    tokens: list[str] = []
    token = ""
    in_quotes = False
    for char in trim(line):
        if char == '"':
            in_quotes = not in_quotes
            token += char
            continue
        if char == " " and not in_quotes:
            if token:
                tokens.append(token)
                token = ""
            continue
        token += char
    if token:
        tokens.append(token)
    return tokens


def is_valid_player(player: dict[str, str]) -> bool:
    """检查玩家记录中 slot、score、ping 是否为合法数字"""
    slot = player.get("slot", "")
    score = player.get("score", "")
    ping = player.get("ping", "")
    return (
        bool(_DIGITS.fullmatch(slot))
        and (not score or bool(_SCORE.fullmatch(score)))
        and (not ping or bool(_DIGITS.fullmatch(ping)))
    )


def parse_key_values(body: str) -> dict[str, str]:
    """
    解析 `\\key\\value\\key\\value...` 形式的服务器变量。

    值一直延伸到下一个反斜杠；最后一个值延伸到换行或文本末尾。
    键为空时丢弃该键值对，遇到结构错误时停止并返回已解析的部分。

    :params body: 去掉响应头后的响应文本。

    :returns: 变量字典，重复的键以最后一次出现为准。
    """
    result: dict[str, str] = {}
    pos = 0
    size = len(body)

    while pos < size and body[pos] == "\n":
        pos += 1

    while pos < size:
        if body[pos] != "\\":
            break
        pos += 1
        end = body.find("\\", pos)
        if end == -1:
            break
        key = body[pos:end]
        pos = end + 1
        end = body.find("\\", pos)
        if end == -1:
            end = body.find("\n", pos)
            if end == -1:
                end = size
        if key:
            result[key] = body[pos:end]
        pos = end

    return result


def parse_info_players(body: str, layout: InfoLayout) -> list[dict[str, str]]:
    """
    解析 `getstatus` 响应中变量块之后的玩家行。

    :params body: 去掉响应头后的响应文本。
    :params layout: 协议对应的玩家行布局。

    :returns: 玩家列表，不合法的行会被直接丢弃。
    """
    players: list[dict[str, str]] = []

    for raw_line in body.split("\n"):
        if not raw_line or raw_line.startswith("\\"):
            # 空行与变量块
            continue
        tokens = tokenize(raw_line)
        if len(tokens) < len(layout.columns):
            continue

        player = dict(zip(layout.columns, tokens))
        name = player["name"]
        if len(name) < 2 or not (name.startswith('"') and name.endswith('"')):
            continue
        player["name"] = name[1:-1]
        for key, value in layout.defaults.items():
            player.setdefault(key, value)

        if is_valid_player(player):
            players.append(player)

    return players


def detect_status_variant(body: str) -> bool:
    """
    判断 `rcon status` 输出是否来自 Steam 版服务器。

    第一个命中的标记决定结果，没有任何标记时视为非 Steam 版。

    :returns: Steam 版返回 True。
    """
    for raw_line in body.split("\n"):
        line = " ".join(raw_line.split()).lower()
        if not line:
            continue
        if line.startswith("hostname:"):
            return True
        if line.startswith("map:"):
            return False
        if STEAM_HEADER in line:
            return True
        if GUID_HEADER in line:
            return False
    return False


def _skip_spaces(line: str, pos: int) -> int:
    while pos < len(line) and line[pos] == " ":
        pos += 1
    return pos


def _find_name_end(line: str, start: int, caret_reset: bool) -> tuple[int, int]:
    """
    从名字列起点向后查找名字的结束位置。

    名字可能包含空格和颜色代码，之后紧跟纯数字的 lastmsg 列。
    开启 `caret_reset` 时，名字在最后一个以 `^7` 结尾的单词处结束。

    :returns: (名字结束位置, 下一列起始位置)
    """
    pos = start
    size = len(line)
    next_column = size
    reset_end = -1
    while pos < size:
        word_start = _skip_spaces(line, pos)
        word_end = word_start
        while word_end < size and line[word_end] != " ":
            word_end += 1
        if _DIGITS.fullmatch(line[word_start:word_end]):
            next_column = word_start
            break
        if caret_reset and line.endswith("^7", word_start, word_end):
            reset_end = word_end
        pos = word_end + 1
    end = min(pos, size)

    if reset_end != -1:
        end = reset_end
    return end, next_column


def split_status_row(line: str, layout: StatusLayout) -> list[str]:
    """
    按布局切分 `rcon status` 中的一行。

    名字列之前的列按空白切分；名字列延伸到下一个纯数字片段（lastmsg）之前，
    若布局开启了 `caret_reset` 且名字中有以 `^7` 结尾的单词，名字在最后一个这样的单词处结束，
    其后到 lastmsg 之间的残留字符会被丢弃；最后一列取该行剩余的全部内容。

    :params line: 已去除首尾空白的一行。
    :params layout: 表格列布局。

    :returns: 切分出的字段，数量可能少于布局列数。
    """
    fields: list[str] = []
    last = layout.field_count - 1
    pos = 0
    size = len(line)

    while pos < size and len(fields) < layout.field_count:
        if len(fields) == layout.name_index:
            start = pos
            end, pos = _find_name_end(line, start, layout.caret_reset)
            fields.append(line[start:end].rstrip(" "))
            continue
        if len(fields) == last:
            fields.append(line[pos:].rstrip(" "))
            break
        end = line.find(" ", pos)
        if end == -1:
            end = size
        fields.append(line[pos:end])
        pos = _skip_spaces(line, end)

    return fields


def parse_status_players(body: str, layouts: dict[bool, StatusLayout]) -> list[dict[str, str]]:
    """
    解析 `rcon status` 的玩家表格。

    :params body: 去掉 `print` 响应头后的文本。
    :params layouts: 以“是否 Steam 版”为键的列布局。

    :returns: 玩家列表，字段不足或数字不合法的行会被丢弃。
    """
    layout = layouts[detect_status_variant(body)]
    players: list[dict[str, str]] = []

    for raw_line in body.split("\n"):
        line = trim(raw_line)
        if not line or any(marker in line for marker in STATUS_SKIP_MARKERS):
            continue
        fields = split_status_row(line, layout)
        if len(fields) < layout.field_count:
            continue
        player = dict(zip(layout.columns, fields))
        if is_valid_player(player):
            players.append(player)

    return players
