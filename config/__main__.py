"""Command line interface for testing configuration loading"""
from . import load_config, SettingsError
from pathlib import Path

EXAMPLE_SETTINGS = """[DEFAULT]
# Block explorer API key (txlist / tokentx endpoints)
explorer_api_key = YOURAPIKEY
explorer_url = https://api.etherscan.io/v2/api
chain_id = 1
# Ledger JSON-RPC endpoint
rpc_url = https://ethereum-rpc.publicnode.com
market_contract_address = 0x5b8902de436A13Cb5097a7cF9bAd16c30fbf5902
# Minimum spacing between explorer requests
explorer_rate_limit_ms = 1200
refresh_interval_minutes = 30
error_expiry_seconds = 20
receipt_timeout_seconds = 300
# Private key and last refresh time are persisted here
state_path = ~/.sourcerer/state.json
api_host = 127.0.0.1
api_port = 11200
# Browser origins allowed to call the API, comma separated
api_cors_origins =
"""

def main():
    """Display loaded configuration"""
    # Save example configuration file
    examples_dir = Path("examples")
    examples_dir.mkdir(exist_ok=True)

    with open(examples_dir / "settings.conf.example", "w") as f:
        f.write(EXAMPLE_SETTINGS)
    print(f"Wrote {examples_dir / 'settings.conf.example'}")

    try:
        settings = load_config()
    except SettingsError as e:
        print(f"\n{e}")
        return

    print("\nSettings Configuration:")
    print("-" * 50)
    for key, value in settings.items():
        if key == 'explorer_api_key':
            value = value[:4] + '...'
        print(f"{key}: {value}")

if __name__ == "__main__":
    main()
