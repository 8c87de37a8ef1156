#!/usr/bin/env python3
"""
Replay a Messenger's history onto a local subchain and print the outcome of
each command, without following the rootchain afterwards.
"""
import logging
import os

from subchain_relay import RelayConfig, RelayCoordinator, RelayError


def main():
    """
    Run one backfill pass.

    Reads SUBCHAIN_ROOTCHAIN_URL and SUBCHAIN_MESSENGER_ADDRESS (and any other
    SUBCHAIN_* setting) from the environment.
    """
    if not os.environ.get("SUBCHAIN_MESSENGER_ADDRESS"):
        print("ERROR: SUBCHAIN_MESSENGER_ADDRESS environment variable is required")
        return

    logging.basicConfig(level=logging.INFO)
    config = RelayConfig.from_env(
        rootchain_url=os.environ.get("SUBCHAIN_ROOTCHAIN_URL", "http://localhost:8545"),
        port=int(os.environ.get("SUBCHAIN_PORT", "8546")),
    )

    relay = RelayCoordinator.from_config(config)
    try:
        cursor = relay.bootstrap()
        print(f"Replaying from rootchain block {cursor}")
        for outcome in relay.backfill():
            line = f"{outcome.source_tx_id}: {outcome.status.value}"
            if outcome.target_tx_id:
                line += f" -> {outcome.target_tx_id}"
            print(line)
        print(f"Synced up to block {relay.synced_to}")
    except RelayError as e:
        print(f"Relay failed: {e}")
    finally:
        relay.close()


if __name__ == "__main__":
    main()
