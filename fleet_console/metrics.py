from collections import Counter


class Metrics:
    """Process counters plus point-in-time gauges, exported together at /metrics.

    Counters only grow (``*_total``). Gauges hold the latest value set, such as
    the number of mounted detail views. Everything runs on the event loop
    thread.
    """

    def __init__(self) -> None:
        self._counters: Counter[str] = Counter()
        self._gauges: dict[str, float] = {}

    def inc(self, key: str, amount: int = 1) -> None:
        if amount < 0:
            raise ValueError(f"counter {key} cannot decrease")
        self._counters[key] += amount

    def set_gauge(self, key: str, value: float) -> None:
        self._gauges[key] = value

    def get(self, key: str) -> float:
        if key in self._gauges:
            return self._gauges[key]
        return self._counters[key]

    def snapshot(self) -> dict[str, float]:
        return {**self._counters, **self._gauges}


metrics = Metrics()
