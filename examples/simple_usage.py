"""
Store a memory and search for it, paying for calls beyond the free quota.

Usage:
    export EVM_PRIVATE_KEY=0x...          # or SOLANA_PRIVATE_KEY=...
    export ZKSTASH_API_URL=https://api.zkstash.ai
    python examples/simple_usage.py
"""
import logging
import sys

from zkstash_sdk import (
    ConfirmationTimeoutError, CreateMemoriesRequest, SearchMemoriesRequest,
    ZkStashClient, ZkStashError
)

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")


def main() -> int:
    try:
        client = ZkStashClient.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}")
        return 1

    print(f"Wallet: {client.address} ({client.chain_family.value})")

    with client:
        try:
            created = client.create_memories(CreateMemoriesRequest(
                agentId="example-agent",
                subjectId="user-1",
                memories=[{"kind": "preference", "data": {"drink": "green tea", "time": "morning"}}],
            ))
            print(f"Created {len(created.created)}, updated {len(created.updated)}")

            found = client.search_memories(SearchMemoriesRequest(
                query="what does the user drink", agentId="example-agent", limit=5,
            ))
            for memory in found.memories:
                print(f"- [{memory.kind}] {memory.data}")
        except ConfirmationTimeoutError as e:
            print(f"Payment {e.tx_ref} was sent but not confirmed; check it before retrying")
            return 2
        except ZkStashError as e:
            print(f"{e.kind.value}: {e}")
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
