"""Calldata module for recognising and decoding marketplace contract calls.

Purchases and fulfillment replies reach the marketplace contract as plain
transactions; the function selector (first four bytes of the input) tells
which entry point was called and the rest is ABI encoded arguments.
"""

import logging
from typing import Any, Dict, Optional, Sequence, Tuple, Union

from eth_abi import decode as abi_decode, encode as abi_encode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector, to_bytes, to_checksum_address
from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

PURCHASE_WITH_ETH = 'purchaseWithEth(uint256,address,address,uint256,bytes)'
PURCHASE_WITH_TOKEN = 'purchaseWithToken(uint256,address,uint256,address,address,uint256,bytes)'
REPLY_TO_ORDER = 'replyToOrder(address,address,bytes32,bytes)'

def signature_types(signature: str) -> Tuple[str, ...]:
    """Argument types of a canonical signature, e.g. `f(uint256,bytes)` -> ('uint256', 'bytes')."""
    args = signature[signature.index('(') + 1:-1]
    return tuple(args.split(',')) if args else ()

def selector(signature: str) -> bytes:
    """Four byte selector of a canonical function signature (keccak-256 prefix)."""
    return function_signature_to_4byte_selector(signature)

PURCHASE_WITH_ETH_SELECTOR = selector(PURCHASE_WITH_ETH)
PURCHASE_WITH_TOKEN_SELECTOR = selector(PURCHASE_WITH_TOKEN)
REPLY_TO_ORDER_SELECTOR = selector(REPLY_TO_ORDER)

class CalldataDecodeError(Exception):
    """Raised when input carries a known selector but its arguments do not decode."""
    def __init__(self, message: str, signature: Optional[str] = None):
        self.signature = signature
        super().__init__(f"{signature}: {message}" if signature else message)

class DecodedPurchase(BaseModel):
    """Arguments of interest from a purchase call."""
    model_config = ConfigDict(frozen=True)

    function: str
    buyer_gateway: str
    payload: bytes

    @property
    def text(self) -> str:
        """Payload as text (the buyer uploads an ASCII envelope followed by `@@@` segments)."""
        try:
            return self.payload.decode('utf-8')
        except UnicodeDecodeError as e:
            raise CalldataDecodeError(f"payload is not valid UTF-8: {e}", self.function) from e

class DecodedReply(BaseModel):
    """Arguments of a `replyToOrder` call."""
    model_config = ConfigDict(frozen=True)

    buyer_address: str
    buyer_gateway: str
    order_txn_hash: str
    payload: bytes

# selector -> (signature, index of buyer gateway, index of payload)
_PURCHASE_LAYOUTS: Dict[bytes, Tuple[str, int, int]] = {
    PURCHASE_WITH_ETH_SELECTOR: (PURCHASE_WITH_ETH, 2, 4),
    PURCHASE_WITH_TOKEN_SELECTOR: (PURCHASE_WITH_TOKEN, 4, 6),
}

def _as_bytes(data: Union[str, bytes]) -> bytes:
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    try:
        return to_bytes(hexstr=data)
    except (ValueError, TypeError) as e:
        raise CalldataDecodeError(f"input is not hex: {e}") from e

def _decode_args(signature: str, body: bytes) -> Tuple[Any, ...]:
    try:
        return abi_decode(list(signature_types(signature)), body)
    except (DecodingError, OverflowError, ValueError) as e:
        raise CalldataDecodeError(str(e), signature) from e

def decode(data: Union[str, bytes]) -> Optional[Union[DecodedPurchase, DecodedReply]]:
    """Decode a marketplace call.

    Returns:
        DecodedPurchase or DecodedReply for known selectors, None otherwise

    Raises:
        CalldataDecodeError: Known selector with arguments that do not decode
    """
    raw = _as_bytes(data)
    if len(raw) < 4:
        return None

    head, body = raw[:4], raw[4:]

    if head in _PURCHASE_LAYOUTS:
        signature, gateway_index, payload_index = _PURCHASE_LAYOUTS[head]
        args = _decode_args(signature, body)
        return DecodedPurchase(
            function=signature.split('(')[0],
            buyer_gateway=to_checksum_address(args[gateway_index]),
            payload=bytes(args[payload_index])
        )

    if head == REPLY_TO_ORDER_SELECTOR:
        buyer_address, buyer_gateway, order_hash, payload = _decode_args(REPLY_TO_ORDER, body)
        return DecodedReply(
            buyer_address=to_checksum_address(buyer_address),
            buyer_gateway=to_checksum_address(buyer_gateway),
            order_txn_hash='0x' + bytes(order_hash).hex(),
            payload=bytes(payload)
        )

    return None

def encode_call(signature: str, args: Sequence[Any]) -> bytes:
    """ABI encode a call to `signature` with `args`, selector included."""
    return selector(signature) + abi_encode(list(signature_types(signature)), list(args))

__all__ = [
    'CalldataDecodeError',
    'DecodedPurchase',
    'DecodedReply',
    'decode',
    'encode_call',
    'selector',
    'signature_types',
    'PURCHASE_WITH_ETH',
    'PURCHASE_WITH_TOKEN',
    'REPLY_TO_ORDER',
    'PURCHASE_WITH_ETH_SELECTOR',
    'PURCHASE_WITH_TOKEN_SELECTOR',
    'REPLY_TO_ORDER_SELECTOR'
]
