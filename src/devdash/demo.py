"""Simulated device fleet for running the dashboard without hardware.

Latency and failure rate are tunable so every panel phase (loading,
refreshing, errored, unreachable) can be seen by hand.
"""

from __future__ import annotations

import logging
import random
import threading
import time

from devdash.app.dispatch import FetchContext
from devdash.core.entry import DataKind

logger = logging.getLogger(__name__)

DEMO_SUBJECTS = ("kitchen-plug", "garage-relay", "office-dimmer", "porch-sensor", "attic-fan")


class DeviceUnreachable(ConnectionError):
    pass


def _inputs(rng: random.Random) -> dict:
    return {
        "items": [
            {"id": i, "name": f"input:{i}", "type": rng.choice(("button", "switch")), "enable": True, "invert": False}
            for i in range(rng.randint(1, 4))
        ]
    }


def _energy(rng: random.Random) -> dict:
    power = round(rng.uniform(0, 1800), 1)
    return {"power_w": power, "voltage_v": round(rng.uniform(228, 242), 1), "total_kwh": round(rng.uniform(10, 900), 2)}


def _scenes(rng: random.Random) -> dict:
    names = ("evening", "away", "movie", "wake-up", "night", "vacation")
    return {"items": [{"id": i, "name": n, "enable": rng.random() > 0.3} for i, n in enumerate(names)]}


def _templates(rng: random.Random) -> dict:
    return {"items": [{"id": f"tpl-{i}", "name": f"template {i}"} for i in range(rng.randint(0, 12))]}


def _alerts(rng: random.Random) -> dict:
    return {
        "items": [
            {"id": 0, "name": "went offline", "condition": "offline", "threshold": "", "enabled": True},
            {"id": 1, "name": "power spike", "condition": "power", "threshold": "1500", "enabled": rng.random() > 0.5},
        ]
    }


# [LAW:dataflow-not-control-flow] DataKind -> payload generator
_GENERATORS = {
    DataKind.INPUTS: _inputs,
    DataKind.ENERGY: _energy,
    DataKind.SCENES: _scenes,
    DataKind.TEMPLATES: _templates,
    DataKind.ALERTS: _alerts,
}


class SimulatedFetcher:
    def __init__(
        self,
        latency: tuple[float, float] = (0.2, 1.5),
        failure_rate: float = 0.1,
        seed: int | None = None,
    ) -> None:
        self._latency = latency
        self._failure_rate = failure_rate
        self._rng = random.Random(seed)
        self._lock = threading.Lock()

    def fetch(self, ctx: FetchContext, subject_id: str, data_kind: DataKind) -> object:
        with self._lock:
            delay = self._rng.uniform(*self._latency)
            fail = self._rng.random() < self._failure_rate
            seed = self._rng.random()
        # Sleep at most until the deadline; the caller reports the overrun.
        time.sleep(min(delay, ctx.remaining()))
        if fail:
            raise DeviceUnreachable(f"{subject_id} did not answer")
        generator = _GENERATORS.get(data_kind)
        payload = generator(random.Random(seed)) if generator else {"subject": subject_id, "kind": str(data_kind)}
        logger.debug("simulated %s/%s in %.2fs", subject_id, data_kind, delay)
        return payload


class SimulatedSaver:
    def __init__(self, latency: float = 0.3, failure_rate: float = 0.0) -> None:
        self._latency = latency
        self._failure_rate = failure_rate

    def save(self, ctx: FetchContext, subject_id: str, form_id: str, values: dict) -> None:
        time.sleep(min(self._latency, ctx.remaining()))
        if random.random() < self._failure_rate:
            raise DeviceUnreachable(f"{subject_id} rejected {form_id}")
        logger.info("saved %s on %s: %s", form_id, subject_id, values)
