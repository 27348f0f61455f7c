"""RPC module for interacting with an Ethereum JSON-RPC node"""
import time
import logging
import requests
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

class RPCError(Exception):
    """Base exception for RPC errors"""
    def __init__(self, message: str, code: Optional[int] = None, method: Optional[str] = None):
        self.code = code
        self.method = method
        super().__init__(f"RPC Error [{code}] in {method}: {message}" if code else message)

class NodeConnectionError(RPCError):
    """Raised when connection to node fails"""
    pass

class NodeAuthError(RPCError):
    """Raised when authentication failed"""
    pass

class ReceiptTimeoutError(RPCError):
    """Raised when a sent transaction is not mined within the allotted time"""
    pass

class LedgerError(RPCError):
    """Node-reported JSON-RPC error codes and messages

    Common error codes:
    -32700 - Parse error
    -32600 - Invalid request
    -32601 - Method not found
    -32602 - Invalid params
    -32603 - Internal error
    -32000 - Server error (nonce too low, insufficient funds, execution reverted...)
    3      - Execution reverted with data
    """
    # Map of known JSON-RPC error codes to human-readable messages
    ERROR_MESSAGES = {
        -32700: "Parse error",
        -32600: "Invalid request",
        -32601: "Method not found",
        -32602: "Invalid params",
        -32603: "Internal error",
        -32000: "Server error",
        3: "Execution reverted",
    }

    def __init__(self, message: str, code: int, method: str):
        self.code = code
        self.method = method
        # Get standard message for known error codes
        standard_msg = self.ERROR_MESSAGES.get(code, "Unknown error")
        # Combine standard message with specific message if different
        full_msg = f"{standard_msg} - {message}" if message != standard_msg else message
        super().__init__(full_msg, code, method)

class RPCMethod:
    """Descriptor class for RPC methods"""
    def __init__(self, method_name: str):
        self.method_name = method_name

    def __get__(self, obj, objtype=None):
        if obj is None:
            return self

        def caller(*args, **kwargs) -> Any:
            return obj._call_method(self.method_name, *args, **kwargs)

        return caller

class EthereumRPC:
    """Ethereum JSON-RPC client"""

    def __init__(self, url: str, timeout: float = 10):
        """Initialize RPC client

        Args:
            url: HTTP(S) endpoint of the node
            timeout: Per-request timeout in seconds
        """
        self.url = url
        self.timeout = timeout

        self.session = requests.Session()
        self.session.headers['content-type'] = 'application/json'

        # Request ID counter
        self._request_id = 0

    def _get_request_id(self) -> int:
        """Get unique request ID"""
        self._request_id += 1
        return self._request_id

    def _call_method(self, method: str, *args) -> Any:
        """Make RPC call to the node

        Args:
            method: RPC method name
            *args: Method arguments

        Returns:
            Response from node

        Raises:
            NodeConnectionError: Connection to node failed
            NodeAuthError: Authentication failed
            LedgerError: Node returned a JSON-RPC error
        """
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": list(args),
            "id": self._get_request_id()
        }

        try:
            response = self.session.post(self.url, json=payload, timeout=self.timeout)

            # Check for auth error
            if response.status_code in (401, 403):
                raise NodeAuthError("Authentication failed - check rpc_url credentials")

            # Try to parse response even if status code is error
            result = response.json()

            # Check for RPC error
            if 'error' in result and result['error'] is not None:
                error = result['error']
                raise LedgerError(
                    error.get('message', 'Unknown error'),
                    error.get('code', -32603),
                    method
                )

            # Now check for HTTP errors after we've tried to parse potential error response
            response.raise_for_status()

            return result['result']

        except requests.exceptions.Timeout as e:
            raise NodeConnectionError(
                f"Request timed out after {self.timeout} seconds"
            ) from e
        except requests.exceptions.ConnectionError as e:
            raise NodeConnectionError(
                f"Failed to connect to node at {self.url}"
            ) from e
        except requests.exceptions.HTTPError as e:
            raise NodeConnectionError(
                f"HTTP error occurred: {str(e)}"
            ) from e
        except requests.exceptions.RequestException as e:
            raise NodeConnectionError(
                f"Request failed: {str(e)}"
            ) from e
        except (KeyError, ValueError) as e:
            raise NodeConnectionError(
                f"Invalid response format: {str(e)}"
            ) from e

    def wait_for_receipt(self, tx_hash: str, timeout: float = 300, poll_interval: float = 2) -> Dict[str, Any]:
        """Block until a transaction is mined and return its receipt

        Raises:
            ReceiptTimeoutError: No receipt within `timeout` seconds
            LedgerError: The transaction was mined but reverted
        """
        deadline = time.monotonic() + timeout
        while True:
            receipt = self.eth_getTransactionReceipt(tx_hash)
            if receipt is not None:
                if int(receipt.get('status', '0x1'), 16) != 1:
                    raise LedgerError(f"Transaction {tx_hash} reverted", 3, 'eth_getTransactionReceipt')
                return receipt
            if time.monotonic() >= deadline:
                raise ReceiptTimeoutError(
                    f"Transaction {tx_hash} not mined after {timeout} seconds"
                )
            logger.debug(f"Waiting for receipt of {tx_hash}")
            time.sleep(poll_interval)

    # Define RPC methods as descriptors
    # Chain state
    eth_blockNumber = RPCMethod('eth_blockNumber')
    eth_chainId = RPCMethod('eth_chainId')
    eth_gasPrice = RPCMethod('eth_gasPrice')

    # Transactions
    eth_getTransactionByHash = RPCMethod('eth_getTransactionByHash')
    eth_getTransactionCount = RPCMethod('eth_getTransactionCount')
    eth_getTransactionReceipt = RPCMethod('eth_getTransactionReceipt')
    eth_sendRawTransaction = RPCMethod('eth_sendRawTransaction')

    # Execution
    eth_call = RPCMethod('eth_call')
    eth_estimateGas = RPCMethod('eth_estimateGas')

# Export client and error types
__all__ = [
    'EthereumRPC',
    'RPCMethod',

    # Error types
    'RPCError',
    'NodeConnectionError',
    'NodeAuthError',
    'LedgerError',
    'ReceiptTimeoutError',
]
