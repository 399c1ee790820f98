"""
End-to-end demo: REGISTER → ROUTE → DEPOSIT → SEND → AUTHORIZE → WITHDRAW

A journalist publishes an anonymous tip jar, supporters fund it and leave
messages, and the journalist withdraws the credit to a fresh wallet.
Events are mirrored to a signed JSONL file that examples/verify_log.py checks.
"""

import logging
import os
import sys
from pathlib import Path

sys.path.append("src")

from config import load_config, from_units, to_units
from crypto import SIGNING_KEY_ENV, generate_signing_seed, load_signer
from credit import BatchExecutor, InMemoryPayoutGateway
from events import EventLog
from identity import IdentityRegistry
from sharding import ShardRouter

OPERATOR = "relay-operator"


def main():
    logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")
    config = load_config()

    print("=" * 60)
    print("Credit Relay Tip Jar Demo")
    print("=" * 60)

    log_path = Path(os.getenv("RELAY_EVENT_LOG", "logs/relay-events.jsonl"))
    if log_path.exists():
        log_path.unlink()
    os.environ.setdefault(SIGNING_KEY_ENV, generate_signing_seed())
    events = EventLog(sink_path=log_path, signer=load_signer())
    payout = InMemoryPayoutGateway()

    router = ShardRouter(OPERATOR, config, event_log=events, payout=payout)
    registry = IdentityRegistry(
        OPERATOR,
        config.registration_fee,
        max_registrations_per_owner=config.max_registrations_per_owner,
        payout=payout,
        event_log=events,
    )

    # 1. Journalist registers a public tip jar
    print("\n[1/6] Registering public tip jar...")
    secret = "journalist-tips-2024"
    tip_jar = registry.register_receiver_hash(
        secret, True, "anon_tips", caller="journalist-wallet", payment=config.registration_fee
    )
    print(f"✓ Tip jar {tip_jar[:18]}... registered as 'anon_tips'")

    # 2. Supporters resolve the alias and route to its shard
    print("\n[2/6] Resolving alias and routing...")
    resolved = registry.get_receiver_hash_by_alias("anon_tips", caller="supporter")
    shard, index = router.route_identity(resolved)
    print(f"✓ Routed to shard {index} of {router.shard_count}")

    # 3. Supporters fund the jar in one batch
    print("\n[3/6] Funding tip jar...")
    executor = BatchExecutor(config.max_batch_size)
    balances = executor.batch_deposit(
        shard, [resolved] * 3, [to_units("0.05"), to_units("0.02"), to_units("0.01")]
    )
    print(f"✓ Balance now {from_units(balances[-1])} credits")

    # 4. A source sends a message paid from the jar
    print("\n[4/6] Sending tip...")
    receipt = shard.ledger.send_message(resolved, b"ipfs://QmEncryptedTip", sender="source")
    print(f"✓ Message #{receipt.seq} delivered (fee {from_units(receipt.fee)})")

    # 5. Journalist authorizes a fresh wallet with the secret
    print("\n[5/6] Authorizing withdrawal wallet...")
    shard.ledger.authorize_withdrawal(resolved, "fresh-wallet", secret)
    print("✓ fresh-wallet authorized")

    # 6. Withdraw everything left
    print("\n[6/6] Withdrawing...")
    remaining = shard.ledger.get_credit_balance(resolved)
    net = shard.ledger.withdraw_credit(resolved, remaining, caller="fresh-wallet")
    print(f"✓ Paid {from_units(net)} credits to fresh-wallet")

    stats = router.aggregate_stats()
    print("\n" + "=" * 60)
    print(f"Messages: {stats.total_messages}  Deposited: {from_units(stats.total_deposited)}")
    print(f"Events written to {log_path} ({len(events)} records)")
    print("=" * 60)

    verified = EventLog.verify_file(log_path)
    print("✓ Event log signatures verified" if verified else "✗ Event log failed verification")
    return 0 if verified else 1


if __name__ == "__main__":
    sys.exit(main())
