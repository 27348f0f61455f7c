"""Command line interface for testing RPC functionality"""
from config import load_config, SettingsError
from . import EthereumRPC, NodeConnectionError, NodeAuthError, LedgerError

def test_rpc():
    """Test various RPC scenarios"""
    try:
        settings = load_config()
    except SettingsError as e:
        print(f"\n{e}")
        return

    client = EthereumRPC(settings['rpc_url'])

    try:
        print("\nTesting valid commands:")
        print("-" * 50)

        print("1. Testing eth_chainId:")
        chain_id = int(client.eth_chainId(), 16)
        print(f"  Success! Chain id: {chain_id}")
        if chain_id != settings['chain_id']:
            print(f"  Warning: settings.conf expects chain {settings['chain_id']}")

        print("\n2. Testing eth_blockNumber:")
        height = int(client.eth_blockNumber(), 16)
        print(f"  Success! Current block height: {height}")

        print("\n3. Testing eth_gasPrice:")
        gas_price = int(client.eth_gasPrice(), 16)
        print(f"  Success! Gas price: {gas_price / 1e9:.3f} gwei")

        print("\nTesting error scenarios:")
        print("-" * 50)

        print("\n4. Testing eth_getTransactionByHash with malformed hash:")
        try:
            client.eth_getTransactionByHash("0x1234")
            print("  Error: Should have raised an exception!")
        except LedgerError as e:
            print(f"  Success! Got expected error: {e}")

    except NodeConnectionError as e:
        print("\nFailed to connect to node:")
        print(f"  {str(e)}")

    except NodeAuthError as e:
        print("\nAuthentication failed:")
        print(f"  {str(e)}")

    except LedgerError as e:
        print(f"\nLedger Error [{e.code}] in {e.method}:")
        print(f"  {str(e)}")

if __name__ == "__main__":
    test_rpc()
