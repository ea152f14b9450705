"""
EVM refunds — ERC-20 USDC `transfer` signed locally with the provider's hot wallet.
"""

import logging
from typing import Optional

from eth_account import Account
from web3 import AsyncWeb3, Web3

from zauthx402.errors import ExecutionError, UnsupportedNetworkError
from zauthx402.models.refund import TransferResult
from zauthx402.networks import EVM_USDC_CONTRACTS, evm_chain_id

logger = logging.getLogger("zauthx402.chain.evm")

DEFAULT_RPC_URLS = {
    1: "https://eth.llamarpc.com",
    8453: "https://mainnet.base.org",
    84532: "https://sepolia.base.org",
}

ERC20_TRANSFER_ABI = [
    {
        "name": "transfer",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
]

# Flat estimate until gas is priced against a fee oracle
GAS_COST_CENTS = 1


class EvmExecutor:
    def __init__(self, private_key: str, rpc_url: Optional[str] = None, rpc_urls: Optional[dict[int, str]] = None):
        self._private_key = private_key if private_key.startswith("0x") else f"0x{private_key}"
        self._rpc_url = rpc_url
        self._rpc_urls = {**DEFAULT_RPC_URLS, **(rpc_urls or {})}
        self._clients: dict[int, AsyncWeb3] = {}
        self._account = None

    @property
    def account(self):
        if self._account is None:
            try:
                self._account = Account.from_key(self._private_key)
            except Exception as e:
                raise ExecutionError(f"Invalid EVM private key: {e}", retryable=False)
        return self._account

    def _web3(self, chain_id: int) -> AsyncWeb3:
        client = self._clients.get(chain_id)
        if client is None:
            url = self._rpc_url or self._rpc_urls.get(chain_id)
            if not url:
                raise ExecutionError(f"No RPC URL configured for chain {chain_id}", retryable=False)
            client = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(url))
            self._clients[chain_id] = client
        return client

    async def transfer_token(self, network: str, recipient: str, amount_raw: int) -> TransferResult:
        chain_id = evm_chain_id(network)
        if chain_id is None:
            raise UnsupportedNetworkError(network)
        token = EVM_USDC_CONTRACTS.get(chain_id)
        if token is None:
            raise ExecutionError(f"No USDC contract known for chain {chain_id}", retryable=False)
        if not Web3.is_address(recipient):
            raise ExecutionError(f"Invalid recipient address: {recipient}", retryable=False)

        account = self.account
        w3 = self._web3(chain_id)
        contract = w3.eth.contract(address=Web3.to_checksum_address(token), abi=ERC20_TRANSFER_ABI)

        nonce = await w3.eth.get_transaction_count(account.address, "pending")
        tx = await contract.functions.transfer(
            Web3.to_checksum_address(recipient), amount_raw,
        ).build_transaction({
            "from": account.address,
            "nonce": nonce,
            "chainId": chain_id,
        })
        signed = account.sign_transaction(tx)
        tx_hash = Web3.to_hex(await w3.eth.send_raw_transaction(signed.raw_transaction))

        logger.info("EVM refund sent: tx=%s to=%s amount=%s", tx_hash, recipient, amount_raw)
        return TransferResult(
            success=True,
            tx_hash=tx_hash,
            amount_raw=str(amount_raw),
            gas_cost_cents=GAS_COST_CENTS,
        )

    async def close(self) -> None:
        for client in self._clients.values():
            await client.provider.disconnect()
        self._clients.clear()
