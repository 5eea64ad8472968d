from __future__ import annotations

import contextlib
from dataclasses import dataclass
import re
import threading
from time import monotonic
from typing import Callable

import dns.exception
import dns.resolver
import idna
from nonebot import logger

DEFAULT_TTL = 300
"""DNS 缓存有效期（秒）"""


class ResolutionError(RuntimeError):
    pass


@dataclass(frozen=True)
class DnsCacheEntry:
    ip: str
    recorded_at: float


def is_ipv4(address: str) -> bool:
    """
    判断给定的地址是否为IPv4地址。

    :params address: 需要验证的地址。

    :returns: 如果地址为IPv4地址则返回True，否则返回False。
    """
    ipv4_pattern = re.compile(r"^\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}$")
    if not ipv4_pattern.match(address):
        return False

    parts = address.split(".")
    return not any(not part.isdigit() or not 0 <= int(part) <= 255 for part in parts)


def is_domain(address: str) -> bool:
    """
    判断给定的地址是否为域名。

    :params address: 需要验证的地址。

    :returns: 如果地址为域名则返回True，否则返回False。
    """
    try:
        punycode_address = idna.encode(address).decode("utf-8")
    except idna.IDNAError:
        return False

    domain_pattern = re.compile(
        r"^(?!-)(?:[A-Za-z0-9-]{1,63}\.)+(?:[A-Za-z]{2,}|xn--[A-Za-z0-9-]{2,})$|^(localhost)$"
    )
    return bool(domain_pattern.match(punycode_address))


def lookup_ipv4(hostname: str, timeout: float = 5) -> str | None:
    """
    查询域名的 A 记录，返回第一个地址。

    :params hostname: 需要解析的域名。
    :params timeout: 解析超时时间（秒）。

    :returns: IPv4 地址，解析失败返回 None。
    """
    if hostname.lower() == "localhost":
        return "127.0.0.1"
    try:
        domain = idna.encode(hostname).decode("utf-8")
    except idna.IDNAError:
        domain = hostname

    with contextlib.suppress(dns.exception.DNSException):
        resolver = dns.resolver.Resolver()
        resolver.timeout = timeout
        resolver.lifetime = timeout
        response = resolver.resolve(domain, "A")
        for rdata in response:
            return str(rdata.address)  # type: ignore
    return None


class DnsCache:
    """
    带过期时间的主机名解析缓存，可在多个线程间共享。

    缓存项写入后不再修改，更新时整体替换。
    """

    def __init__(
        self,
        ttl: float = DEFAULT_TTL,
        lookup: Callable[[str], str | None] = lookup_ipv4,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        """
        :param ttl: 缓存有效期（秒），默认 5 分钟。
        :param lookup: 实际执行解析的函数，失败时返回 None。
        :param clock: 单调时钟，测试时可替换。
        """
        self.ttl = ttl
        self._lookup = lookup
        self._clock = clock
        self._entries: dict[str, DnsCacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, hostname: str) -> DnsCacheEntry | None:
        with self._lock:
            entry = self._entries.get(hostname)
            if entry is None:
                return None
            if self._clock() - entry.recorded_at >= self.ttl:
                # 过期的缓存项直接移除
                del self._entries[hostname]
                return None
        return entry

    def resolve(self, hostname: str) -> str:
        """
        将主机名解析为 IPv4 地址，IPv4 地址直接返回。

        :params hostname: 主机名或 IPv4 地址。

        :returns: IPv4 地址。

        :raises ResolutionError: 解析失败。
        """
        if is_ipv4(hostname):
            return hostname

        if entry := self.get(hostname):
            logger.debug(f"DNS 缓存命中 {hostname} -> {entry.ip}")
            return entry.ip

        ip = self._lookup(hostname)
        if not ip:
            raise ResolutionError("Failed to resolve hostname")

        with self._lock:
            self._entries[hostname] = DnsCacheEntry(ip, self._clock())
        logger.debug(f"DNS 解析 {hostname} -> {ip}")
        return ip

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
