"""
Solana transaction wire format: base58 keys, the compact transaction layout,
and just enough message compilation to build an SPL token transfer.

Wire layout of a transaction:

    shortvec  signature count, then 64-byte signatures
    [u8]      version prefix (high bit set) for versioned messages
    u8 x 3    header: required signatures, readonly signed, readonly unsigned
    shortvec  account count, then 32-byte public keys
    32 bytes  recent blockhash
    shortvec  instruction count, then per instruction:
              u8 program id index, shortvec + account indices, shortvec + data
"""

import base64
import binascii
import hashlib
from dataclasses import dataclass, field
from typing import Optional

import base58

B58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"

TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
TOKEN_2022_PROGRAM_ID = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"
ASSOCIATED_TOKEN_PROGRAM_ID = "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"
SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"

TOKEN_PROGRAMS = frozenset({TOKEN_PROGRAM_ID, TOKEN_2022_PROGRAM_ID})

SIGNATURE_LEN = 64
PUBKEY_LEN = 32


def b58encode(data: bytes) -> str:
    """Base58 (Bitcoin alphabet). A key of only zero bytes encodes to "1"."""
    num = int.from_bytes(data, "big")
    if num == 0:
        return "1"
    digits = []
    while num > 0:
        num, rem = divmod(num, 58)
        digits.append(B58_ALPHABET[rem])
    leading = len(data) - len(data.lstrip(b"\x00"))
    return "1" * leading + "".join(reversed(digits))


def b58decode(text: str, length: Optional[int] = None) -> bytes:
    """Decode base58; `length` left-pads the result (32 for public keys)."""
    out = base58.b58decode(text)
    if length is not None:
        if len(out) > length:
            raise ValueError(f"Decoded {len(out)} bytes, expected {length}")
        out = out.rjust(length, b"\x00")
    return out


def encode_shortvec(value: int) -> bytes:
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


class WireReader:
    """Cursor over transaction bytes. Every read raises ValueError past the end."""

    def __init__(self, data: bytes):
        self._data = data
        self.offset = 0

    def take(self, n: int) -> bytes:
        end = self.offset + n
        if n < 0 or end > len(self._data):
            raise ValueError(f"Truncated transaction: need {n} bytes at offset {self.offset}")
        chunk = self._data[self.offset:end]
        self.offset = end
        return chunk

    def u8(self) -> int:
        return self.take(1)[0]

    def peek(self) -> int:
        if self.offset >= len(self._data):
            raise ValueError("Truncated transaction")
        return self._data[self.offset]

    def shortvec(self) -> int:
        value = 0
        for shift in (0, 7, 14):
            byte = self.u8()
            value |= (byte & 0x7F) << shift
            if not byte & 0x80:
                return value
        raise ValueError("shortvec longer than 3 bytes")


@dataclass
class CompiledInstruction:
    program_id_index: int
    accounts: list[int]
    data: bytes


@dataclass
class ParsedTransaction:
    signatures: list[bytes]
    version: Optional[int]
    header: tuple[int, int, int]
    account_keys: list[bytes]
    recent_blockhash: bytes
    instructions: list[CompiledInstruction]


def parse_transaction(raw: bytes) -> ParsedTransaction:
    reader = WireReader(raw)
    signatures = [reader.take(SIGNATURE_LEN) for _ in range(reader.shortvec())]

    version = None
    if reader.peek() & 0x80:
        version = reader.u8() & 0x7F

    header = (reader.u8(), reader.u8(), reader.u8())
    account_keys = [reader.take(PUBKEY_LEN) for _ in range(reader.shortvec())]
    recent_blockhash = reader.take(PUBKEY_LEN)

    instructions = []
    for _ in range(reader.shortvec()):
        program_id_index = reader.u8()
        accounts = list(reader.take(reader.shortvec()))
        data = reader.take(reader.shortvec())
        instructions.append(CompiledInstruction(program_id_index, accounts, data))

    return ParsedTransaction(signatures, version, header, account_keys, recent_blockhash, instructions)


def find_transfer_authority(tx: ParsedTransaction) -> bytes:
    """Authority of the first SPL token instruction, else the fee payer.

    TransferChecked lists (source, mint, destination, authority); Transfer
    lists (source, destination, authority).
    """
    keys = tx.account_keys
    for ix in tx.instructions:
        program = b58encode(keys[ix.program_id_index])
        if program not in TOKEN_PROGRAMS:
            continue
        if len(ix.accounts) >= 4:
            return keys[ix.accounts[3]]
        if len(ix.accounts) >= 3:
            return keys[ix.accounts[2]]
    if not keys:
        raise ValueError("Transaction has no account keys")
    return keys[0]


def extract_solana_payer(transaction_b64: str) -> Optional[str]:
    """Payer address from a base64 Solana transaction, or None if it cannot be walked."""
    try:
        raw = base64.b64decode(transaction_b64, validate=True)
        return b58encode(find_transfer_authority(parse_transaction(raw)))
    except (ValueError, IndexError, binascii.Error):
        return None


# -- message compilation (used by the Solana refund executor) --

_P = 2**255 - 19
_D = (-121665 * pow(121666, _P - 2, _P)) % _P


def is_on_curve(key: bytes) -> bool:
    """Whether 32 bytes decompress to an ed25519 point."""
    y = int.from_bytes(key, "little") & ((1 << 255) - 1)
    y %= _P
    y2 = y * y % _P
    u = (y2 - 1) % _P
    v = (_D * y2 + 1) % _P
    x2 = u * pow(v, _P - 2, _P) % _P
    return x2 == 0 or pow(x2, (_P - 1) // 2, _P) == 1


def find_program_address(seeds: list[bytes], program_id: bytes) -> tuple[bytes, int]:
    for bump in range(255, -1, -1):
        digest = hashlib.sha256(
            b"".join(seeds) + bytes([bump]) + program_id + b"ProgramDerivedAddress"
        ).digest()
        if not is_on_curve(digest):
            return digest, bump
    raise ValueError("Unable to find a viable program address bump seed")


def associated_token_address(owner: bytes, mint: bytes, token_program: bytes = b"") -> bytes:
    token_program = token_program or b58decode(TOKEN_PROGRAM_ID, PUBKEY_LEN)
    address, _ = find_program_address(
        [owner, token_program, mint], b58decode(ASSOCIATED_TOKEN_PROGRAM_ID, PUBKEY_LEN)
    )
    return address


@dataclass
class AccountMeta:
    pubkey: bytes
    is_signer: bool
    is_writable: bool


@dataclass
class Instruction:
    program_id: bytes
    accounts: list[AccountMeta] = field(default_factory=list)
    data: bytes = b""


def compile_message(payer: bytes, instructions: list[Instruction], recent_blockhash: bytes) -> bytes:
    """Compile a legacy message. The payer always takes account index 0."""
    metas: dict[bytes, AccountMeta] = {payer: AccountMeta(payer, True, True)}
    for ix in instructions:
        for meta in ix.accounts:
            known = metas.get(meta.pubkey)
            if known:
                known.is_signer |= meta.is_signer
                known.is_writable |= meta.is_writable
            else:
                metas[meta.pubkey] = AccountMeta(meta.pubkey, meta.is_signer, meta.is_writable)
        if ix.program_id not in metas:
            metas[ix.program_id] = AccountMeta(ix.program_id, False, False)

    payer_meta = metas.pop(payer)
    ordered = [payer_meta] + sorted(
        metas.values(), key=lambda m: (not m.is_signer, not m.is_writable)
    )
    index = {m.pubkey: i for i, m in enumerate(ordered)}

    header = bytes([
        sum(1 for m in ordered if m.is_signer),
        sum(1 for m in ordered if m.is_signer and not m.is_writable),
        sum(1 for m in ordered if not m.is_signer and not m.is_writable),
    ])

    out = bytearray(header)
    out += encode_shortvec(len(ordered))
    for meta in ordered:
        out += meta.pubkey
    out += recent_blockhash
    out += encode_shortvec(len(instructions))
    for ix in instructions:
        out.append(index[ix.program_id])
        out += encode_shortvec(len(ix.accounts))
        out += bytes(index[m.pubkey] for m in ix.accounts)
        out += encode_shortvec(len(ix.data))
        out += ix.data
    return bytes(out)


def serialize_transaction(signatures: list[bytes], message: bytes) -> bytes:
    return encode_shortvec(len(signatures)) + b"".join(signatures) + message
