"""
Chain execution capability — "send amount X of USDC to Y on network N".

Executors raise ExecutionError for failures; ChainRouter turns every outcome
into a TransferResult so callers never see an exception.
"""

import asyncio
import logging
from typing import Optional, Protocol

from zauthx402.config import RefundConfig
from zauthx402.errors import ExecutionError
from zauthx402.models.refund import TransferResult
from zauthx402.networks import NetworkFamily, classify_network

logger = logging.getLogger("zauthx402.chain")


class ChainExecutor(Protocol):
    async def transfer_token(self, network: str, recipient: str, amount_raw: int) -> TransferResult:
        ...

    async def close(self) -> None:
        ...


class ChainRouter:
    """Holds one executor per network family and dispatches transfers to it."""

    def __init__(
        self,
        evm: Optional[ChainExecutor] = None,
        solana: Optional[ChainExecutor] = None,
        timeout_s: Optional[float] = None,
    ):
        self._executors: dict[NetworkFamily, ChainExecutor] = {}
        if evm is not None:
            self._executors[NetworkFamily.EVM] = evm
        if solana is not None:
            self._executors[NetworkFamily.SOLANA] = solana
        self._timeout_s = timeout_s

    @classmethod
    def from_config(cls, config: RefundConfig) -> "ChainRouter":
        evm = solana = None
        if config.private_key:
            from zauthx402.chain.evm import EvmExecutor
            evm = EvmExecutor(config.private_key, rpc_url=config.evm_rpc_url)
        if config.solana_private_key:
            from zauthx402.chain.solana import SolanaExecutor
            solana = SolanaExecutor(config.solana_private_key, rpc_url=config.solana_rpc_url)
        return cls(evm=evm, solana=solana, timeout_s=config.execution_timeout_s)

    @property
    def available(self) -> bool:
        return bool(self._executors)

    async def transfer(
        self,
        network: str,
        recipient: str,
        amount_raw: int,
        family: Optional[NetworkFamily] = None,
    ) -> TransferResult:
        family = family or classify_network(network)
        if family is NetworkFamily.UNSUPPORTED:
            return TransferResult.failed(f"Unsupported network: {network}", retryable=False)

        executor = self._executors.get(family)
        if executor is None:
            return TransferResult.failed(f"No signer configured for {family.value} refunds", retryable=False)

        try:
            call = executor.transfer_token(network, recipient, amount_raw)
            if self._timeout_s:
                return await asyncio.wait_for(call, timeout=self._timeout_s)
            return await call
        except asyncio.TimeoutError:
            logger.warning("Transfer on %s timed out after %ss", network, self._timeout_s)
            return TransferResult.failed(f"Transfer timed out after {self._timeout_s}s", retryable=True)
        except ExecutionError as e:
            logger.warning("Transfer on %s failed: %s", network, e)
            return TransferResult.failed(str(e), retryable=e.retryable)
        except Exception as e:
            logger.warning("Transfer on %s failed: %s", network, e)
            return TransferResult.failed(str(e), retryable=True)

    async def close(self) -> None:
        for executor in self._executors.values():
            await executor.close()
