import base64, json, os, re, hashlib
from typing import Optional
from nacl.signing import SigningKey, VerifyKey
from nacl.exceptions import BadSignatureError

from errors import InvalidIdentityError

# An identity hash is a 32-byte digest rendered as 0x-prefixed lowercase hex
IdentityHash = str

ZERO_HASH: IdentityHash = "0x" + "00" * 32

_IDENTITY_RE = re.compile(r"0x[0-9a-f]{64}")

SIGNING_KEY_ENV = "RELAY_SIGNING_SK_B64"


def hash_secret(secret_proof: str) -> IdentityHash:
    """One-way identity hash of a caller-held secret."""
    return "0x" + hashlib.sha256(secret_proof.encode("utf-8")).hexdigest()


def is_identity_hash(value) -> bool:
    return isinstance(value, str) and _IDENTITY_RE.fullmatch(value.lower()) is not None


def normalize_identity(identity) -> IdentityHash:
    """Lowercase and validate an identity hash; the zero sentinel is rejected."""
    if not is_identity_hash(identity):
        raise InvalidIdentityError(f"Invalid identity hash: {identity!r}")
    identity = identity.lower()
    if identity == ZERO_HASH:
        raise InvalidIdentityError("Identity hash is the zero sentinel")
    return identity


def short_id(identity: Optional[str]) -> str:
    """Truncated identity for log lines."""
    return (identity or "")[:10]


def cjson(data: dict) -> bytes:
    """Canonical JSON bytes (sorted keys, no spaces)."""
    return json.dumps(data, sort_keys=True, separators=(",", ":")).encode()

def sha256_hex(b: bytes) -> str:
    return hashlib.sha256(b).hexdigest()


def generate_signing_seed() -> str:
    """Fresh ed25519 seed, base64 encoded for RELAY_SIGNING_SK_B64."""
    return base64.b64encode(SigningKey.generate().encode()).decode()

def load_signer() -> SigningKey:
    val = os.getenv(SIGNING_KEY_ENV)
    if not val:
        raise RuntimeError(f"Missing env var: {SIGNING_KEY_ENV}")
    return SigningKey(base64.b64decode(val))  # 32 bytes


def sign_record(record: dict, signer: Optional[SigningKey] = None) -> dict:
    """Return a new record with pk and sig attached."""
    sk = signer or load_signer()
    vk = sk.verify_key
    sig = sk.sign(cjson(record)).signature
    return {
        **record,
        "sig_pk_b64": base64.b64encode(bytes(vk)).decode(),
        "sig_b64": base64.b64encode(sig).decode(),
    }

def verify_record(signed: dict, expected_pk: Optional[VerifyKey] = None) -> bool:
    """Verify pk+sig over the canonical body (without sig fields)."""
    pk_b64 = signed.get("sig_pk_b64")
    sig_b64 = signed.get("sig_b64")
    if not pk_b64 or not sig_b64:
        return False
    pk = base64.b64decode(pk_b64)
    if expected_pk is not None and bytes(expected_pk) != pk:
        return False
    body = {k: v for k, v in signed.items() if k not in ("sig_pk_b64", "sig_b64")}
    try:
        VerifyKey(pk).verify(cjson(body), base64.b64decode(sig_b64))
        return True
    except BadSignatureError:
        return False
