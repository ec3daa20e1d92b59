"""
唯一标识生成模块

包含两类标识：
- Snowflake 64 位主键：所有表的主键，按时间有序
- 收据参考码（reference code）：展示给用户的收据编号，
  由时间戳、随机字节、主机/进程指纹、进程内计数器和校验位组成，
  多进程并发生成时无需中心计数服务也不会重复

Snowflake ID 结构（64 位）：
- 41 位：时间戳（毫秒，从 2024-01-01 开始）
- 10 位：节点 ID（0-1023）
- 12 位：序列号（同一毫秒内的序号，0-4095）
"""
from __future__ import annotations

import hashlib
import itertools
import os
import secrets
import socket
import threading
import time

from storyprint.core.config import settings

_EPOCH_MS = 1704067200000  # 2024-01-01T00:00:00Z

REFERENCE_PREFIX = "SPH"
_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


class Snowflake:
    """线程安全的 Snowflake ID 生成器"""

    def __init__(self, *, node_id: int) -> None:
        if not (0 <= node_id <= 1023):
            raise ValueError("SNOWFLAKE_NODE_ID must be in [0, 1023]")
        self._node_id = node_id
        self._lock = threading.Lock()
        self._last_ts = -1
        self._seq = 0

    @staticmethod
    def _now_ms() -> int:
        return int(time.time() * 1000)

    def next_id(self) -> int:
        """
        生成下一个唯一 ID

        时钟回拨不超过 5 秒时等待时间追上，超过则拒绝生成。

        Raises:
            RuntimeError: 当时钟回拨超过 5 秒时
        """
        with self._lock:
            ts = self._now_ms()
            if ts < self._last_ts:
                diff = self._last_ts - ts
                if diff > 5000:
                    raise RuntimeError(
                        f"Clock moved backwards by {diff}ms. "
                        "Refusing to generate IDs to prevent duplicates."
                    )
                ts = self._wait_until(self._last_ts)

            if ts == self._last_ts:
                self._seq = (self._seq + 1) & 0xFFF
                if self._seq == 0:
                    # 同一毫秒序列号用尽，等下一毫秒
                    ts = self._wait_until(self._last_ts + 1)
            else:
                self._seq = 0

            self._last_ts = ts
            return ((ts - _EPOCH_MS) << 22) | (self._node_id << 12) | self._seq

    @classmethod
    def _wait_until(cls, target_ms: int) -> int:
        ts = cls._now_ms()
        while ts < target_ms:
            time.sleep(0.001)
            ts = cls._now_ms()
        return ts


_GENERATOR: Snowflake | None = None


def generate_id() -> int:
    """生成 Snowflake 主键（进程内单例生成器）"""
    global _GENERATOR
    if _GENERATOR is None:
        _GENERATOR = Snowflake(node_id=settings.SNOWFLAKE_NODE_ID)
    return _GENERATOR.next_id()


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def _checksum(body: str) -> str:
    return hashlib.sha256(body.encode("utf-8")).hexdigest()[:4].upper()


class ReferenceCodeGenerator:
    """
    收据参考码生成器

    格式：SPH-<时间戳36进制>-<随机字节>-<主机/进程指纹>-<计数器>-<校验位>
    例如：SPH-M2K9Z1QX-9F3A61C2-7B1E-1A-4C0D

    不保证严格单调，也不是全局连续编号；唯一性来自随机字节 + 指纹 + 计数器的组合。
    """

    def __init__(self, *, prefix: str = REFERENCE_PREFIX) -> None:
        self._prefix = prefix
        self._lock = threading.Lock()
        self._counter = itertools.count(1)
        self._fingerprint_pid: int | None = None
        self._fingerprint = ""

    def _process_fingerprint(self) -> str:
        pid = os.getpid()
        # fork 之后 pid 变化，需要重新计算
        if self._fingerprint_pid != pid:
            raw = f"{socket.gethostname()}:{pid}".encode("utf-8")
            self._fingerprint = hashlib.sha256(raw).hexdigest()[:4].upper()
            self._fingerprint_pid = pid
        return self._fingerprint

    def generate(self) -> str:
        with self._lock:
            seq = next(self._counter)
            fingerprint = self._process_fingerprint()
        parts = [
            self._prefix,
            _to_base36(int(time.time() * 1000)),
            secrets.token_hex(4).upper(),
            fingerprint,
            _to_base36(seq),
        ]
        body = "-".join(parts)
        return f"{body}-{_checksum(body)}"


def verify_reference_code(code: str) -> bool:
    """校验参考码的校验位是否匹配"""
    body, sep, check = code.rpartition("-")
    if not sep or not body.startswith(f"{REFERENCE_PREFIX}-"):
        return False
    return _checksum(body) == check


_REFERENCE_GENERATOR = ReferenceCodeGenerator()


def generate_reference_code() -> str:
    return _REFERENCE_GENERATOR.generate()
