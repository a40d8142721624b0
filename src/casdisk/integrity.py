"""
Integrity digests for content addressing.

An Integrity value is an ordered set of (algorithm, hash) pairs with a
textual form of space-separated "<algorithm>-<base64>" tokens, highest
priority algorithm first. Hashes are only ever compared within the same
algorithm.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
from dataclasses import dataclass
from enum import Enum

from casdisk.exceptions import IntegrityParseError


class Algorithm(str, Enum):
    """Supported hash algorithms, declared from weakest to strongest."""

    SHA1 = "sha1"
    SHA256 = "sha256"
    SHA384 = "sha384"
    SHA512 = "sha512"

    @property
    def priority(self) -> int:
        """Rank used whenever digests of different algorithms meet."""
        return _PRIORITY[self]

    def new(self) -> "hashlib._Hash":
        """Create a fresh hashlib object for this algorithm."""
        return hashlib.new(self.value)

    def __str__(self) -> str:
        return self.value


_PRIORITY = {algorithm: rank for rank, algorithm in enumerate(Algorithm)}

# Algorithm used by writers when neither the caller nor an expected
# integrity names one.
DEFAULT_ALGORITHM = Algorithm.SHA256


@dataclass(frozen=True)
class Hash:
    """A single digest produced by one algorithm."""

    algorithm: Algorithm
    digest: bytes

    @property
    def hex(self) -> str:
        return self.digest.hex()

    @property
    def b64(self) -> str:
        return base64.b64encode(self.digest).decode("ascii")

    def __str__(self) -> str:
        return f"{self.algorithm.value}-{self.b64}"

    @classmethod
    def parse(cls, token: str) -> Hash | None:
        """Parse one "<algorithm>-<base64>[?opts]" token.

        Args:
            token: A single token of an integrity string.

        Returns:
            The parsed Hash, or None for tokens naming an unknown algorithm.

        Raises:
            IntegrityParseError: If the token is malformed.
        """
        body = token.split("?", 1)[0]
        name, sep, encoded = body.partition("-")
        if not sep or not encoded:
            raise IntegrityParseError("Malformed integrity token", {"value": token})
        try:
            algorithm = Algorithm(name.lower())
        except ValueError:
            return None
        try:
            digest = base64.b64decode(encoded, validate=True)
        except binascii.Error as e:
            raise IntegrityParseError(
                "Invalid base64 in integrity token", {"value": token}
            ) from e
        return cls(algorithm, digest)


@dataclass(frozen=True)
class Integrity:
    """Immutable set of hashes sorted by descending algorithm priority."""

    hashes: tuple[Hash, ...]

    def __post_init__(self) -> None:
        if not self.hashes:
            raise ValueError("Integrity requires at least one hash")
        # sorted() is stable, so hashes of equal priority keep their order
        unique = tuple(dict.fromkeys(self.hashes))
        ordered = tuple(sorted(unique, key=lambda h: h.algorithm.priority, reverse=True))
        object.__setattr__(self, "hashes", ordered)

    @classmethod
    def from_bytes(cls, data: bytes, *algorithms: Algorithm) -> Integrity:
        """Compute the integrity of an in-memory buffer.

        Args:
            data: Bytes to hash.
            algorithms: Algorithms to use (default: DEFAULT_ALGORITHM).

        Returns:
            Integrity over data.
        """
        hasher = Hasher(*algorithms)
        hasher.update(data)
        return hasher.result()

    @classmethod
    def parse(cls, text: str) -> Integrity:
        """Parse the textual form.

        Tokens naming unknown algorithms are skipped.

        Raises:
            IntegrityParseError: If no usable hash remains or a token is malformed.
        """
        hashes = [h for h in (Hash.parse(tok) for tok in text.split()) if h is not None]
        if not hashes:
            raise IntegrityParseError("No supported hashes in integrity string", {"value": text})
        return cls(tuple(hashes))

    def __str__(self) -> str:
        return " ".join(str(h) for h in self.hashes)

    def pick_algorithm(self) -> Algorithm:
        """Return the highest-priority algorithm present."""
        return self.hashes[0].algorithm

    def to_hex(self) -> tuple[Algorithm, str]:
        """Return the preferred hash as (algorithm, lowercase hex)."""
        preferred = self.hashes[0]
        return preferred.algorithm, preferred.hex

    def matches(self, other: Integrity) -> Algorithm | None:
        """Check other against this integrity at this integrity's top algorithm.

        Only hashes of the highest-priority algorithm in self are considered;
        a match requires other to carry an identical hash of that algorithm.

        Returns:
            The matching algorithm, or None if nothing matched.
        """
        algorithm = self.pick_algorithm()
        theirs = {h for h in other.hashes if h.algorithm == algorithm}
        for h in self.hashes:
            if h.algorithm != algorithm:
                break
            if h in theirs:
                return algorithm
        return None

    def concat(self, other: Integrity) -> Integrity:
        """Combine both sets of hashes."""
        return Integrity(self.hashes + other.hashes)


class Hasher:
    """Incremental hasher over one or more algorithms."""

    def __init__(self, *algorithms: Algorithm) -> None:
        if not algorithms:
            algorithms = (DEFAULT_ALGORITHM,)
        self._hashers = [(Algorithm(a), Algorithm(a).new()) for a in dict.fromkeys(algorithms)]

    def update(self, data: bytes) -> None:
        for _, h in self._hashers:
            h.update(data)

    def result(self) -> Integrity:
        return Integrity(tuple(Hash(algorithm, h.digest()) for algorithm, h in self._hashers))
