"""Shared fixtures: an in-memory NetworkExecutor for component tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import pytest

if TYPE_CHECKING:
    from numpy.typing import NDArray


class FakeExecutor:
    """Returns canned outputs per model and records every call."""

    def __init__(self, outputs: dict[str, dict[str, NDArray[np.float32]]] | None = None) -> None:
        self.outputs = outputs or {}
        self.loaded: list[str] = []
        self.released: list[str] = []
        self.calls: list[tuple[str, NDArray[np.float32]]] = []

    async def load(self, model_name: str) -> None:
        self.loaded.append(model_name)

    async def run(self, model_name: str, tensor: NDArray[np.float32]) -> dict[str, NDArray[np.float32]]:
        self.calls.append((model_name, tensor))
        return self.outputs[model_name]

    def release(self, model_name: str) -> None:
        self.released.append(model_name)


@pytest.fixture()
def executor() -> FakeExecutor:
    return FakeExecutor()
