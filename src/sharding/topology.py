"""Shard topology: stable hashing of identity hashes onto shard indexes."""

from crypto import is_identity_hash
from errors import InvalidIdentityError


def stable_hash(identity: str) -> int:
    """
    Integer value of an identity hash.

    Identity hashes are already uniform digests, so their numeric value is
    used directly rather than hashing them again.

    Raises:
        InvalidIdentityError: If identity is not a 32-byte hex hash
    """
    if not is_identity_hash(identity):
        raise InvalidIdentityError(f"Invalid identity hash: {identity!r}")
    return int(identity, 16)


class ShardTopology:
    """Maps identity hashes to shard indexes by modulo of the shard count."""

    def __init__(self, num_shards: int):
        """
        Initialize shard topology.

        Args:
            num_shards: Number of shards currently live (at least 1)
        """
        if num_shards < 1:
            raise ValueError(f"num_shards must be at least 1, got {num_shards}")
        self.num_shards = num_shards

    def get_shard_for_identity(self, identity: str) -> int:
        """
        Determine which shard holds a given identity.

        The result depends on the shard count in effect; growing the topology
        moves the route of some identities without moving their balances.

        Args:
            identity: Identity hash

        Returns:
            Shard index (0 to num_shards-1)
        """
        return stable_hash(identity) % self.num_shards

    def grow(self) -> int:
        """Add one shard; returns the new shard's index"""
        self.num_shards += 1
        return self.num_shards - 1
