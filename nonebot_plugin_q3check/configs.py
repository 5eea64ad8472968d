from pathlib import Path

import ujson

from .config import config as plugin_config
from .data_source import GameServerQuery
from .resolver import DnsCache


def read_json(file: str) -> dict:
    path = Path(__file__).parent / file
    return ujson.loads(path.read_text(encoding="utf-8").strip())


def rcon_password_for(host: str, port: int) -> str:
    """按 `host:port`、`host` 的顺序查找 rcon 密码，找不到时使用默认密码"""
    passwords = plugin_config.rcon_passwords
    return passwords.get(f"{host}:{port}", passwords.get(host, plugin_config.rcon_password))


message_type = plugin_config.type
lang = plugin_config.language
lang_data = read_json("language.json")
VERSION = "0.1.0"

game_query = GameServerQuery(
    dns_cache=DnsCache(ttl=plugin_config.dns_ttl),
    query_timeout=plugin_config.query_timeout,
    map_timeout=plugin_config.map_timeout,
)
"""插件共用的查询实例"""
