import json, sys, os
sys.path.append("src")  # so we can import crypto.py from src/
from crypto import verify_record

LOG_PATH = os.getenv("RELAY_EVENT_LOG", "logs/relay-events.jsonl")

def main():
    ok = bad = 0
    expected_seq = 1
    try:
        with open(LOG_PATH, "r", encoding="utf-8") as f:
            for i, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                rec = json.loads(line)
                if not verify_record(rec):
                    bad += 1
                    print(f"BAD SIG at line {i}")
                elif rec.get("seq") != expected_seq:
                    bad += 1
                    print(f"SEQ GAP at line {i}: expected {expected_seq}, got {rec.get('seq')}")
                else:
                    ok += 1
                expected_seq = (rec.get("seq") or expected_seq) + 1
    except FileNotFoundError:
        print(f"Log not found: {LOG_PATH}")
        return 1
    print(f"Verified {ok} records, {bad} bad")
    return 0 if bad == 0 else 1

if __name__ == "__main__":
    sys.exit(main())
