"""In-memory providers for tests and offline signing."""

from __future__ import annotations

from typing import TYPE_CHECKING

from defi_tx.core.script import extract_pubkey_hash
from defi_tx.errors import FeeEstimationUnavailable
from defi_tx.providers.base import FeeRate, SpendableOutput

if TYPE_CHECKING:
    from collections.abc import Iterable

    from defi_tx.core.keys import KeyPair


class MemoryPrevoutProvider:
    """Serves a fixed list of outputs.

    With ``batch_size`` set, each :meth:`collect` call hands out only the
    next batch, so callers have to come back for more.
    """

    def __init__(self, outputs: Iterable[SpendableOutput] = (), *, batch_size: int | None = None) -> None:
        self._outputs = list(outputs)
        self._batch_size = batch_size
        self._cursor = 0
        self.calls: list[int] = []

    async def collect(self, minimum_value: int) -> list[SpendableOutput]:  # noqa: ASYNC910
        self.calls.append(minimum_value)
        if self._batch_size is None:
            return list(self._outputs)
        batch = self._outputs[self._cursor : self._cursor + self._batch_size]
        self._cursor += len(batch)
        return batch


class StaticFeeRateProvider:
    """Returns one configured rate, or raises *error* if given."""

    def __init__(self, per_kb: int = 5_000, *, error: Exception | None = None) -> None:
        self._rate = FeeRate(per_kb)
        self._error = error
        self.calls = 0

    @classmethod
    def unavailable(cls, reason: str = "no estimate") -> StaticFeeRateProvider:
        return cls(error=FeeEstimationUnavailable(reason))

    async def estimate(self) -> FeeRate:  # noqa: ASYNC910
        self.calls += 1
        if self._error is not None:
            raise self._error
        return self._rate


class KeyRingResolver:
    """Resolves keys by the pubkey hash in the output's locking script."""

    def __init__(self, *keys: KeyPair) -> None:
        self._keys = {key.pubkey_hash: key for key in keys}
        self.resolved: list[SpendableOutput] = []

    def add(self, key: KeyPair) -> None:
        self._keys[key.pubkey_hash] = key

    async def key_for(self, output: SpendableOutput) -> KeyPair:  # noqa: ASYNC910
        self.resolved.append(output)
        pubkey_hash = extract_pubkey_hash(output.script)
        if pubkey_hash is None or pubkey_hash not in self._keys:
            msg = f"No key for output {output.txid}:{output.vout}"
            raise LookupError(msg)
        return self._keys[pubkey_hash]
