from nonebot import require
from nonebot.permission import SUPERUSER
from nonebot.plugin import PluginMetadata, inherit_supported_adapters
from .config import Config, config as plugin_config
from .configs import lang_data, rcon_password_for
from .data_source import PROTOCOLS, Protocols
from .utils import (
    change_language_to,
    get_language,
    get_message_list,
    handle_exception,
    is_qbot,
    is_validity_address,
    parse_host,
    parse_protocol,
)

require("nonebot_plugin_alconna")
require("nonebot_plugin_uninfo")
from arclet.alconna import AllParam, Alconna, Args, CommandMeta
from nonebot_plugin_alconna import Arparma, Text, UniMessage, on_alconna
from nonebot_plugin_uninfo import Session, UniSession

__plugin_meta__ = PluginMetadata(
    name="Q3查服",
    description="Medal of Honor / Call of Duty 服务器状态查询与 rcon 远程控制/id Tech 3 server status query and rcon",  # noqa: E501
    type="application",
    homepage="https://github.com/molanp/nonebot_plugin_q3check",
    supported_adapters=inherit_supported_adapters(
        "nonebot_plugin_alconna", "nonebot_plugin_uninfo"
    ),
    config=Config,
    usage="""
    Medal of Honor / Call of Duty 服务器状态查询
    协议：moh(1)、cod(2)，不填时使用配置中的默认协议
    用法：
        Q3查服 [ip]:[端口] [协议]
        Q3服务器信息 [ip]:[端口]
        Q3远控 [ip]:[端口] [协议] [命令]（仅超级用户）
        设置语言 zh-cn
        当前语言
        语言列表
    usage:
        q3check ip:port [protocol]
        q3info ip:port
        q3rcon ip:port protocol command (superuser only)
        set_lang en
        lang_now
        lang_list
    """.strip(),
    extra={"author": "molanp <luotian233@foxmail.com>"},
)

check = on_alconna(
    Alconna("q3check", Args["host?", str]["protocol?", str]),
    aliases={"Q3查服"},
    priority=10,
    block=True,
)

info = on_alconna(
    Alconna("q3info", Args["host?", str]),
    aliases={"Q3服务器信息"},
    priority=10,
    block=True,
)

rcon = on_alconna(
    Alconna("q3rcon", Args["host", str]["protocol", str]["command", AllParam]),
    aliases={"Q3远控"},
    permission=SUPERUSER,
    priority=10,
    block=True,
)

lang_change = on_alconna(
    Alconna("set_lang", Args["language", str], meta=CommandMeta(compact=True)),
    aliases={"设置语言"},
    priority=10,
    block=True,
)

lang_now = on_alconna(
    Alconna("lang_now", meta=CommandMeta(compact=True)),
    aliases={"当前语言"},
    priority=10,
    block=True,
)

lang_list = on_alconna(
    Alconna("lang_list", meta=CommandMeta(compact=True)),
    aliases={"语言列表"},
    priority=10,
    block=True,
)


def _texts() -> dict:
    return lang_data[get_language()]


@check.handle()
async def _(p: Arparma, session: Session = UniSession()):
    if not p.find("host"):
        await check.finish(Text(_texts()["where_ip"]), reply_to=True)
    host: str = p.query("host")
    protocol = parse_protocol(p.query("protocol"), plugin_config.protocol)
    if protocol is None:
        await check.finish(Text(_texts()["unknown_protocol"]), reply_to=True)
    await send_result(check, session, host, protocol, "getstatus")


@info.handle()
async def _(p: Arparma, session: Session = UniSession()):
    if not p.find("host"):
        await info.finish(Text(_texts()["where_ip"]), reply_to=True)
    await send_result(info, session, p.query("host"), Protocols.CALL_OF_DUTY, "getinfo")


@rcon.handle()
async def _(p: Arparma, session: Session = UniSession()):
    host: str = p.query("host")
    protocol = parse_protocol(p.query("protocol"), plugin_config.protocol)
    if protocol is None:
        await rcon.finish(Text(_texts()["unknown_protocol"]), reply_to=True)
    command = " ".join(str(i) for i in (p.query("command") or [])).strip()
    if not command:
        await rcon.finish(Text(_texts()["where_command"]), reply_to=True)

    address, port = parse_host(host)
    password = rcon_password_for(address, port or PROTOCOLS[protocol.value].default_port)
    if not password:
        await rcon.finish(Text(_texts()["no_password"]), reply_to=True)
    await send_result(rcon, session, host, protocol, f"rcon {command}", password)


async def send_result(
    matcher, session: Session, host: str, protocol: Protocols, command: str, password: str = ""
):
    address, _ = parse_host(host)
    if not is_validity_address(address):
        await matcher.finish(Text(_texts()["where_ip"]), reply_to=True)

    try:
        message_list = await get_message_list(host, protocol, command, password)
        if is_qbot(session):
            for m in message_list:
                await matcher.send(UniMessage(m), reply_to=True)
        else:
            await matcher.send(UniMessage(message_list), reply_to=True)
    except Exception as e:
        await matcher.send(handle_exception(e), reply_to=True)


@lang_change.handle()
async def _(language: str):
    if language:
        await lang_change.send(Text(change_language_to(language)), reply_to=True)
    else:
        await lang_change.send(Text("Language?"), reply_to=True)


@lang_now.handle()
async def _():
    await lang_now.send(Text(f"Language: {get_language()}."), reply_to=True)


@lang_list.handle()
async def _():
    i = "\n".join(list(lang_data.keys()))
    await lang_list.send(Text(f"Language List:\n{i}"), reply_to=True)
