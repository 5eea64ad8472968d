from nonebot.plugin import get_plugin_config
from pydantic import BaseModel, Field


class ScopedConfig(BaseModel):
    language: str = Field(default="zh-cn")
    """插件消息所使用的语言"""
    type: int = Field(default=0)
    """插件发送的消息类型，0 为图片，1 为文本"""
    protocol: int = Field(default=2)
    """未指定协议时使用的协议编号，1 为 Medal of Honor，2 为 Call of Duty"""
    query_timeout: int = Field(default=1000)
    """普通查询的超时时间（毫秒）"""
    map_timeout: int = Field(default=2000)
    """rcon map 的超时时间（毫秒）"""
    dns_ttl: int = Field(default=300)
    """DNS 缓存有效期（秒）"""
    rcon_password: str = Field(default="")
    """默认 rcon 密码"""
    rcon_passwords: dict[str, str] = Field(default_factory=dict)
    """按 `host:port` 指定的 rcon 密码"""


class Config(BaseModel):
    q3c: ScopedConfig = Field(default_factory=ScopedConfig)
    """Q3Check Config"""


config: ScopedConfig = get_plugin_config(Config).q3c
