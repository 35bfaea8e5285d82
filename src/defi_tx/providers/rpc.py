"""Node JSON-RPC collaborator — unspent outputs, fee estimates, broadcast.

Async client for the node's JSON-RPC endpoint:
- ``listunspent``        → :class:`RpcPrevoutProvider`
- ``estimatesmartfee``   → :class:`RpcFeeRateProvider`
- ``sendrawtransaction`` → :meth:`NodeRpcClient.send_transaction`

Responses are parsed with ``Decimal`` floats and validated with pydantic
before anything reaches the builder; shape mismatches raise
:class:`~defi_tx.errors.ProviderDataError`.
"""

from __future__ import annotations

import itertools
import json
import logging
from decimal import Decimal  # noqa: TC003 - Pydantic needs this at runtime
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import BaseModel, Field, ValidationError

from defi_tx.core.amount import to_minor_units
from defi_tx.core.script import Script
from defi_tx.errors import FeeEstimationUnavailable, ProviderDataError, RpcError
from defi_tx.providers.base import FeeRate, SpendableOutput

if TYPE_CHECKING:
    from collections.abc import Sequence

    from defi_tx.config.settings import RpcConfig
    from defi_tx.core.transaction import Transaction

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UnspentEntry(BaseModel):
    """One element of a ``listunspent`` result."""

    txid: str = Field(pattern=r"^[0-9a-fA-F]{64}$")
    vout: int = Field(ge=0)
    amount: Decimal = Field(ge=0)
    script_pub_key: str = Field(alias="scriptPubKey", pattern=r"^([0-9a-fA-F]{2})*$")
    token_id: int | None = Field(0, alias="tokenId")
    address: str | None = None
    confirmations: int = 0

    model_config = {"populate_by_name": True}

    def to_spendable(self) -> SpendableOutput:
        try:
            value = to_minor_units(self.amount)
        except ValueError as exc:
            msg = f"Unrepresentable amount {self.amount} for {self.txid}:{self.vout}"
            raise ProviderDataError(msg) from exc
        return SpendableOutput(
            txid=self.txid.lower(),
            vout=self.vout,
            value=value,
            script=Script.from_hex(self.script_pub_key),
            token_id=self.token_id,
        )


class SmartFeeEstimate(BaseModel):
    """Result of ``estimatesmartfee``; ``feerate`` is in coins per kB."""

    feerate: Decimal | None = Field(None, ge=0)
    errors: list[str] = Field(default_factory=list)
    blocks: int = 0


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class NodeRpcClient:
    """Async JSON-RPC client for a node.

    Usage::

        rpc = NodeRpcClient(config.rpc)
        await rpc.connect()
        try:
            utxos = await rpc.list_unspent()
        finally:
            await rpc.close()
    """

    def __init__(self, config: RpcConfig) -> None:
        """Initialize the RPC client.

        Args:
            config: Endpoint URL, credentials and timeout.
        """
        self._config = config
        self._client: httpx.AsyncClient | None = None
        self._ids = itertools.count(1)

    async def connect(self) -> None:
        """Create the underlying HTTP client."""
        auth = None
        if self._config.user:
            auth = httpx.BasicAuth(self._config.user, self._config.password)
        self._client = httpx.AsyncClient(
            base_url=self._config.url.rstrip("/"),
            headers={"Content-Type": "application/json"},
            auth=auth,
            timeout=self._config.timeout,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def call(self, method: str, *params: Any) -> Any:
        """Invoke *method* and return its ``result``.

        Raises:
            RpcError: Transport failure or a JSON-RPC error object.
            ProviderDataError: The response is not a JSON-RPC envelope.
        """
        client = self._ensure_connected()
        request_id = next(self._ids)
        payload = {"jsonrpc": "1.0", "id": request_id, "method": method, "params": list(params)}
        try:
            response = await client.post("/", content=json.dumps(payload))
        except httpx.HTTPError as exc:
            msg = f"RPC {method} failed: {exc}"
            raise RpcError(msg) from exc

        try:
            body = json.loads(response.content, parse_float=Decimal)
        except ValueError as exc:
            if response.is_error:
                msg = f"RPC {method} failed: HTTP {response.status_code}"
                raise RpcError(msg) from exc
            msg = f"RPC {method} returned non-JSON body"
            raise ProviderDataError(msg) from exc
        if not isinstance(body, dict) or "result" not in body:
            msg = f"RPC {method} returned an unexpected envelope"
            raise ProviderDataError(msg)

        error = body.get("error")
        if error:
            code = error.get("code") if isinstance(error, dict) else None
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            logger.debug("RPC %s error %s: %s", method, code, message)
            msg = f"RPC {method}: {message}"
            raise RpcError(msg, rpc_code=code)
        return body["result"]

    async def list_unspent(
        self,
        *,
        min_confirmations: int | None = None,
        addresses: Sequence[str] = (),
    ) -> list[UnspentEntry]:
        """``listunspent`` validated into :class:`UnspentEntry` records."""
        min_conf = self._config.min_confirmations if min_confirmations is None else min_confirmations
        params: list[Any] = [min_conf, 9_999_999]
        if addresses:
            params.append(list(addresses))
        result = await self.call("listunspent", *params)
        if not isinstance(result, list):
            msg = "listunspent result is not a list"
            raise ProviderDataError(msg)
        try:
            return [UnspentEntry.model_validate(item) for item in result]
        except ValidationError as exc:
            msg = f"Invalid listunspent entry: {exc.errors()[0]['msg']}"
            raise ProviderDataError(msg) from exc

    async def estimate_smart_fee(self, conf_target: int = 6) -> SmartFeeEstimate:
        result = await self.call("estimatesmartfee", conf_target)
        try:
            return SmartFeeEstimate.model_validate(result)
        except ValidationError as exc:
            msg = f"Invalid estimatesmartfee result: {exc.errors()[0]['msg']}"
            raise ProviderDataError(msg) from exc

    async def send_raw_transaction(self, raw_tx_hex: str) -> str:
        """Submit a signed transaction; returns the txid reported by the node."""
        result = await self.call("sendrawtransaction", raw_tx_hex)
        if not isinstance(result, str):
            msg = "sendrawtransaction result is not a txid string"
            raise ProviderDataError(msg)
        return result

    async def send_transaction(self, tx: Transaction) -> str:
        txid = await self.send_raw_transaction(tx.to_hex())
        logger.info("Broadcast transaction %s", txid)
        return txid

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _ensure_connected(self) -> httpx.AsyncClient:
        if self._client is None:
            msg = "NodeRpcClient is not connected, call connect() first"
            raise RpcError(msg)
        return self._client


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


class RpcPrevoutProvider:
    """Spendable outputs from ``listunspent``, optionally limited to *addresses*."""

    def __init__(self, client: NodeRpcClient, *, addresses: Sequence[str] = ()) -> None:
        self._client = client
        self._addresses = tuple(addresses)

    async def collect(self, minimum_value: int) -> list[SpendableOutput]:
        entries = await self._client.list_unspent(addresses=self._addresses)
        outputs = [entry.to_spendable() for entry in entries]
        logger.debug(
            "listunspent returned %d outputs (wanted %d minor units)", len(outputs), minimum_value
        )
        return outputs


class RpcFeeRateProvider:
    """Fee rate from ``estimatesmartfee``.

    Any failure to obtain a usable estimate is reported as
    :class:`~defi_tx.errors.FeeEstimationUnavailable`.
    """

    def __init__(self, client: NodeRpcClient, *, conf_target: int = 6) -> None:
        self._client = client
        self._conf_target = conf_target

    async def estimate(self) -> FeeRate:
        try:
            estimate = await self._client.estimate_smart_fee(self._conf_target)
        except (RpcError, ProviderDataError) as exc:
            msg = f"estimatesmartfee failed: {exc.message}"
            raise FeeEstimationUnavailable(msg) from exc
        if estimate.feerate is None:
            reason = "; ".join(estimate.errors) or "no feerate in response"
            msg = f"estimatesmartfee has no estimate: {reason}"
            raise FeeEstimationUnavailable(msg)
        try:
            per_kb = to_minor_units(estimate.feerate)
        except ValueError as exc:
            msg = f"Unrepresentable fee rate {estimate.feerate}"
            raise FeeEstimationUnavailable(msg) from exc
        return FeeRate(per_kb)
