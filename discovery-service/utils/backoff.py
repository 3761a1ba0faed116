import random


class Backoff:
    """单个 watch 目标的指数退避（连续失败时递增，成功后重置）

    - base: 第一次失败后的等待（秒）
    - cap: 等待上限（秒）
    - jitter: 叠加的随机抖动上限（秒），避免所有目标同时重试
    """

    def __init__(self, base: float = 0.2, cap: float = 5.0, jitter: float = 0.2):
        self.base = base
        self.cap = cap
        self.jitter = jitter
        self._failures = 0
        self._delay = 0.0

    @property
    def failures(self) -> int:
        return self._failures

    def delay(self) -> float:
        """下一次轮询前需要等待的秒数；无失败时为 0"""
        return self._delay

    def record_failure(self) -> float:
        """记一次失败，返回本次确定的等待时间（抖动只在此处抽取一次）"""
        self._failures += 1
        d = min(self.base * (2 ** min(self._failures - 1, 32)), self.cap)
        self._delay = d + random.random() * self.jitter
        return self._delay

    def record_success(self) -> None:
        self._failures = 0
        self._delay = 0.0
