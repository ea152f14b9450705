"""
Solana refunds — SPL USDC transfer to the payer's associated token account.

The recipient's ATA is created idempotently in the same transaction, so a
payer who never held USDC on the account still receives the refund.
"""

import base64
import json
import logging
import struct
from typing import Any, Optional

import httpx
from nacl.signing import SigningKey

from zauthx402.errors import ExecutionError
from zauthx402.models.refund import TransferResult
from zauthx402.networks import SOLANA_USDC_MINTS, is_solana_devnet
from zauthx402.solana_wire import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    PUBKEY_LEN,
    SYSTEM_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    AccountMeta,
    Instruction,
    associated_token_address,
    b58decode,
    b58encode,
    compile_message,
    serialize_transaction,
)

logger = logging.getLogger("zauthx402.chain.solana")

DEFAULT_RPC_URLS = {
    "mainnet": "https://api.mainnet-beta.solana.com",
    "devnet": "https://api.devnet.solana.com",
}

# SPL token instruction tags
TOKEN_TRANSFER = 3
ATA_CREATE_IDEMPOTENT = 1


class SolanaRPCError(Exception):
    def __init__(self, message: str, error_data: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.error_data = error_data or {}


class SolanaRpcClient:
    """Minimal async JSON-RPC 2.0 client over httpx."""

    def __init__(self, rpc_url: str, commitment: str = "confirmed", timeout: float = 30.0):
        self.rpc_url = rpc_url
        self.commitment = commitment
        self._client = httpx.AsyncClient(timeout=timeout)
        self._request_id = 0

    async def _rpc(self, method: str, params: Optional[list[Any]] = None) -> Any:
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }
        resp = await self._client.post(self.rpc_url, json=payload)
        resp.raise_for_status()
        data = resp.json()
        if "error" in data:
            raise SolanaRPCError(data["error"].get("message", "Unknown RPC error"), data["error"])
        return data.get("result")

    async def get_latest_blockhash(self) -> str:
        result = await self._rpc("getLatestBlockhash", [{"commitment": self.commitment}])
        return result["value"]["blockhash"]

    async def send_raw_transaction(self, signed_tx_base64: str) -> str:
        return await self._rpc(
            "sendTransaction",
            [signed_tx_base64, {"encoding": "base64", "preflightCommitment": self.commitment}],
        )

    async def close(self) -> None:
        await self._client.aclose()


def load_signing_key(secret: str) -> SigningKey:
    """Accepts a base58 64-byte keypair, a base58 32-byte seed, or a JSON byte array."""
    text = secret.strip()
    try:
        if text.startswith("["):
            raw = bytes(json.loads(text))
        else:
            raw = b58decode(text)
    except ValueError as e:
        raise ExecutionError(f"Invalid Solana private key: {e}", retryable=False)

    if len(raw) not in (32, 64):
        raise ExecutionError(
            f"Invalid Solana private key length: {len(raw)} bytes", retryable=False,
        )
    key = SigningKey(raw[:32])
    if len(raw) == 64 and bytes(key.verify_key) != raw[32:]:
        raise ExecutionError("Solana keypair public half does not match its seed", retryable=False)
    return key


def build_transfer_instructions(
    payer: bytes,
    recipient: bytes,
    mint: bytes,
    amount_raw: int,
) -> list[Instruction]:
    token_program = b58decode(TOKEN_PROGRAM_ID, PUBKEY_LEN)
    source = associated_token_address(payer, mint, token_program)
    destination = associated_token_address(recipient, mint, token_program)

    create_ata = Instruction(
        program_id=b58decode(ASSOCIATED_TOKEN_PROGRAM_ID, PUBKEY_LEN),
        accounts=[
            AccountMeta(payer, True, True),
            AccountMeta(destination, False, True),
            AccountMeta(recipient, False, False),
            AccountMeta(mint, False, False),
            AccountMeta(b58decode(SYSTEM_PROGRAM_ID, PUBKEY_LEN), False, False),
            AccountMeta(token_program, False, False),
        ],
        data=bytes([ATA_CREATE_IDEMPOTENT]),
    )
    transfer = Instruction(
        program_id=token_program,
        accounts=[
            AccountMeta(source, False, True),
            AccountMeta(destination, False, True),
            AccountMeta(payer, True, False),
        ],
        data=bytes([TOKEN_TRANSFER]) + struct.pack("<Q", amount_raw),
    )
    return [create_ata, transfer]


class SolanaExecutor:
    def __init__(self, private_key: str, rpc_url: Optional[str] = None):
        self._private_key = private_key
        self._rpc_url = rpc_url
        self._clients: dict[str, SolanaRpcClient] = {}
        self._signing_key: Optional[SigningKey] = None

    @property
    def signing_key(self) -> SigningKey:
        if self._signing_key is None:
            self._signing_key = load_signing_key(self._private_key)
        return self._signing_key

    @property
    def address(self) -> str:
        return b58encode(bytes(self.signing_key.verify_key))

    def _rpc(self, cluster: str) -> SolanaRpcClient:
        client = self._clients.get(cluster)
        if client is None:
            client = SolanaRpcClient(self._rpc_url or DEFAULT_RPC_URLS[cluster])
            self._clients[cluster] = client
        return client

    async def transfer_token(self, network: str, recipient: str, amount_raw: int) -> TransferResult:
        cluster = "devnet" if is_solana_devnet(network) else "mainnet"
        try:
            recipient_key = b58decode(recipient, PUBKEY_LEN)
        except ValueError:
            raise ExecutionError(f"Invalid recipient address: {recipient}", retryable=False)
        if len(recipient_key) != PUBKEY_LEN:
            raise ExecutionError(f"Invalid recipient address: {recipient}", retryable=False)

        key = self.signing_key
        payer = bytes(key.verify_key)
        mint = b58decode(SOLANA_USDC_MINTS[cluster], PUBKEY_LEN)
        rpc = self._rpc(cluster)

        blockhash = b58decode(await rpc.get_latest_blockhash(), PUBKEY_LEN)
        message = compile_message(
            payer, build_transfer_instructions(payer, recipient_key, mint, amount_raw), blockhash,
        )
        signature = key.sign(message).signature
        raw = serialize_transaction([signature], message)

        try:
            tx_signature = await rpc.send_raw_transaction(base64.b64encode(raw).decode("ascii"))
        except SolanaRPCError as e:
            raise ExecutionError(str(e), retryable=True, details=e.error_data)

        logger.info("Solana refund sent: tx=%s to=%s amount=%s", tx_signature, recipient, amount_raw)
        return TransferResult(
            success=True,
            tx_hash=tx_signature,
            amount_raw=str(amount_raw),
            gas_cost_cents=0,
        )

    async def close(self) -> None:
        for client in self._clients.values():
            await client.close()
        self._clients.clear()
