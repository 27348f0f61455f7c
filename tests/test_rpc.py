"""Tests for the JSON-RPC client (no node required)."""

from unittest.mock import Mock, patch

import pytest
import requests

from rpc import (
    EthereumRPC, LedgerError, NodeAuthError, NodeConnectionError, ReceiptTimeoutError
)

def response(status_code=200, body=None):
    resp = Mock(status_code=status_code)
    resp.json.return_value = body
    if status_code >= 400:
        resp.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status_code} error")
    return resp

@pytest.fixture
def rpc():
    client = EthereumRPC('http://node.invalid')
    client.session = Mock()
    return client

def test_method_call_payload(rpc):
    rpc.session.post.return_value = response(body={'jsonrpc': '2.0', 'id': 1, 'result': '0x1'})

    assert rpc.eth_chainId() == '0x1'
    assert rpc.eth_blockNumber() == '0x1'

    first = rpc.session.post.call_args_list[0].kwargs['json']
    second = rpc.session.post.call_args_list[1].kwargs['json']
    assert first == {'jsonrpc': '2.0', 'method': 'eth_chainId', 'params': [], 'id': 1}
    assert second['id'] == 2

def test_params_are_forwarded(rpc):
    rpc.session.post.return_value = response(body={'result': '0x5'})
    rpc.eth_getTransactionCount('0xabc', 'pending')
    assert rpc.session.post.call_args.kwargs['json']['params'] == ['0xabc', 'pending']

def test_node_error_maps_to_ledger_error(rpc):
    rpc.session.post.return_value = response(body={
        'error': {'code': -32602, 'message': 'invalid argument 0: hex string has length 3'}
    })
    with pytest.raises(LedgerError) as exc_info:
        rpc.eth_getTransactionByHash('0x123')
    assert exc_info.value.code == -32602
    assert exc_info.value.method == 'eth_getTransactionByHash'
    assert 'Invalid params' in str(exc_info.value)

def test_auth_failure(rpc):
    rpc.session.post.return_value = response(status_code=401, body={})
    with pytest.raises(NodeAuthError):
        rpc.eth_gasPrice()

def test_connection_failures(rpc):
    rpc.session.post.side_effect = requests.exceptions.ConnectionError("refused")
    with pytest.raises(NodeConnectionError):
        rpc.eth_gasPrice()

    rpc.session.post.side_effect = requests.exceptions.Timeout("slow")
    with pytest.raises(NodeConnectionError, match="timed out"):
        rpc.eth_gasPrice()

def test_missing_result_is_invalid_format(rpc):
    rpc.session.post.return_value = response(body={'jsonrpc': '2.0', 'id': 1})
    with pytest.raises(NodeConnectionError, match="Invalid response format"):
        rpc.eth_gasPrice()

def test_wait_for_receipt_polls_until_mined(rpc):
    receipt = {'status': '0x1', 'blockNumber': '0x10', 'gasUsed': '0x5208'}
    rpc.session.post.side_effect = [
        response(body={'result': None}),
        response(body={'result': receipt})
    ]
    with patch('rpc.time.sleep') as sleep:
        assert rpc.wait_for_receipt('0xabc', timeout=10, poll_interval=0.5) == receipt
    sleep.assert_called_once_with(0.5)

def test_wait_for_receipt_reverted(rpc):
    rpc.session.post.return_value = response(body={'result': {'status': '0x0'}})
    with pytest.raises(LedgerError, match="reverted"):
        rpc.wait_for_receipt('0xabc')

def test_wait_for_receipt_timeout(rpc):
    rpc.session.post.return_value = response(body={'result': None})
    with pytest.raises(ReceiptTimeoutError):
        rpc.wait_for_receipt('0xabc', timeout=0, poll_interval=0)
