"""
Hierarchical deterministic key derivation (BIP32, private derivation).

Conceptual Background:
---------------------
A master key and chain code come from HMAC-SHA512("Bitcoin seed", seed).
Each step derives a child from its parent:

    I = HMAC-SHA512(chain_code, data || index)
    child_key = (I[:32] + parent_key) mod n,  child_chain = I[32:]

For a hardened step (index >= 2**31) ``data`` is 0x00 || parent_private_key,
so the child depends on parent private material: a leaked child key
exposes neither its siblings nor its parent. Normal steps use the
compressed parent public key instead and are only reachable through
explicit caller paths such as the wallet root ``m/44'/236'/0'/0/0``.

Per-entity keys:
---------------
A spreadsheet cell (row, col) maps to ``<root_prefix>/row'/col'`` with both
components hardened, e.g. ``m/44'/236'/0'/3'/5'`` for cell (3, 5).
"""

import hashlib
import hmac
import re
from dataclasses import dataclass
from typing import Iterable, Tuple, Union

from cellchain.crypto import (
    SECP256K1_ORDER,
    KeyPair,
    compress_public_key,
    private_key_to_public_key,
)
from cellchain.errors import ConfigurationError
from cellchain.utils.logger import get_logger
from cellchain.utils.validation import validate_bytes

logger = get_logger("hd")


# =============================================================================
# Constants
# =============================================================================

HARDENED_OFFSET = 0x80000000
MAX_INDEX = HARDENED_OFFSET - 1

# BIP32 seed length bounds (128 to 512 bits)
MIN_SEED_BYTES = 16
MAX_SEED_BYTES = 64

MASTER_HMAC_KEY = b"Bitcoin seed"

DEFAULT_ROOT_PREFIX = "m/44'/236'/0'"

_STEP_PATTERN = re.compile(r"^(\d+)(['hH]?)$")


# =============================================================================
# Paths
# =============================================================================


@dataclass(frozen=True)
class PathStep:
    """One derivation step: a child index and whether it is hardened."""
    index: int
    hardened: bool = True

    def __post_init__(self):
        if not isinstance(self.index, int) or isinstance(self.index, bool):
            raise ConfigurationError(f"Path index must be int, got {type(self.index).__name__}")
        if not 0 <= self.index <= MAX_INDEX:
            raise ConfigurationError(f"Path index {self.index} out of range [0, {MAX_INDEX}]")

    @property
    def child_number(self) -> int:
        """Index as encoded in the HMAC input."""
        return self.index + HARDENED_OFFSET if self.hardened else self.index

    def __str__(self) -> str:
        return f"{self.index}'" if self.hardened else str(self.index)


@dataclass(frozen=True)
class DerivationPath:
    """An ordered sequence of derivation steps rooted at the master key."""
    steps: Tuple[PathStep, ...] = ()

    @classmethod
    def parse(cls, text: str) -> "DerivationPath":
        """
        Parse a path such as ``m/44'/236'/0'/3'/5'``.

        ``'``, ``h`` and ``H`` mark hardened steps.
        """
        if not isinstance(text, str):
            raise ConfigurationError(f"Derivation path must be str, got {type(text).__name__}")

        parts = text.strip().split("/")
        if parts[0] != "m":
            raise ConfigurationError(f"Derivation path must start with 'm': {text!r}")

        steps = []
        for part in parts[1:]:
            match = _STEP_PATTERN.match(part)
            if not match:
                raise ConfigurationError(f"Malformed path component {part!r} in {text!r}")
            steps.append(PathStep(int(match.group(1)), hardened=bool(match.group(2))))

        return cls(tuple(steps))

    def child(self, index: int, hardened: bool = True) -> "DerivationPath":
        """Return this path extended by one step."""
        return DerivationPath(self.steps + (PathStep(index, hardened),))

    def extend(self, steps: Iterable[PathStep]) -> "DerivationPath":
        return DerivationPath(self.steps + tuple(steps))

    @property
    def fully_hardened(self) -> bool:
        return all(step.hardened for step in self.steps)

    def __len__(self) -> int:
        return len(self.steps)

    def __str__(self) -> str:
        return "/".join(["m"] + [str(step) for step in self.steps])


PathLike = Union[DerivationPath, str]


def parse_path(path: PathLike) -> DerivationPath:
    """Accept a DerivationPath or its textual form."""
    if isinstance(path, DerivationPath):
        return path
    return DerivationPath.parse(path)


# =============================================================================
# Entity identifiers
# =============================================================================


@dataclass(frozen=True)
class EntityId:
    """
    A spreadsheet cell coordinate.

    Textual form is ``"row,col"``, e.g. ``"3,5"``.
    """
    row: int
    col: int

    def __post_init__(self):
        for name in ("row", "col"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool):
                raise ConfigurationError(f"Entity {name} must be int")
            if not 0 <= value <= MAX_INDEX:
                raise ConfigurationError(f"Entity {name} {value} out of range [0, {MAX_INDEX}]")

    @classmethod
    def parse(cls, text: str) -> "EntityId":
        try:
            row, col = (int(part.strip()) for part in text.split(","))
        except (AttributeError, ValueError):
            raise ConfigurationError(f"Malformed entity id {text!r}, expected 'row,col'") from None
        return cls(row, col)

    def __str__(self) -> str:
        return f"{self.row},{self.col}"


EntityLike = Union[EntityId, str, Tuple[int, int]]


def to_entity_id(entity: EntityLike) -> EntityId:
    """Accept an EntityId, a ``"row,col"`` string or a (row, col) tuple."""
    if isinstance(entity, EntityId):
        return entity
    if isinstance(entity, str):
        return EntityId.parse(entity)
    if isinstance(entity, tuple) and len(entity) == 2:
        return EntityId(*entity)
    raise ConfigurationError(f"Cannot interpret {type(entity).__name__} as an entity id")


def entity_path(root_prefix: PathLike, entity: EntityLike) -> DerivationPath:
    """Canonical path of an entity: ``root_prefix/row'/col'``."""
    entity_id = to_entity_id(entity)
    return parse_path(root_prefix).extend([PathStep(entity_id.row), PathStep(entity_id.col)])


# =============================================================================
# Derivation
# =============================================================================


def _check_seed(seed: bytes) -> None:
    valid, err = validate_bytes(seed, "seed", min_length=MIN_SEED_BYTES, max_length=MAX_SEED_BYTES)
    if not valid:
        raise ConfigurationError(f"Invalid master seed: {err}")


def master_key(seed: bytes) -> Tuple[bytes, bytes]:
    """
    Derive master private key and chain code from seed.

    Returns:
        (private_key, chain_code), 32 bytes each
    """
    _check_seed(seed)
    digest = hmac.new(MASTER_HMAC_KEY, bytes(seed), hashlib.sha512).digest()
    key, chain_code = digest[:32], digest[32:]

    k = int.from_bytes(key, byteorder="big")
    if k == 0 or k >= SECP256K1_ORDER:
        raise ConfigurationError("Seed yields an invalid master key")

    return key, chain_code


def derive_child(private_key: bytes, chain_code: bytes, step: PathStep) -> Tuple[bytes, bytes]:
    """Derive one child private key and chain code."""
    if step.hardened:
        data = b"\x00" + private_key
    else:
        data = compress_public_key(private_key_to_public_key(private_key))
    data += step.child_number.to_bytes(4, byteorder="big")

    digest = hmac.new(chain_code, data, hashlib.sha512).digest()
    tweak = int.from_bytes(digest[:32], byteorder="big")
    if tweak >= SECP256K1_ORDER:
        raise ConfigurationError(f"Invalid child at step {step}; use the next index")

    child = (tweak + int.from_bytes(private_key, byteorder="big")) % SECP256K1_ORDER
    if child == 0:
        raise ConfigurationError(f"Invalid child at step {step}; use the next index")

    return child.to_bytes(32, byteorder="big"), digest[32:]


def derive(seed: bytes, path: PathLike) -> KeyPair:
    """
    Derive the keypair at ``path`` below the seed's master key.

    Pure and deterministic: identical seed and path always produce the
    identical keypair.

    Args:
        seed: Master seed, 16 to 64 bytes
        path: DerivationPath or its text form

    Raises:
        ConfigurationError: bad seed or path
    """
    derivation_path = parse_path(path)
    key, chain_code = master_key(seed)
    for step in derivation_path.steps:
        key, chain_code = derive_child(key, chain_code, step)
    return KeyPair.from_private_key(key)


@dataclass(frozen=True)
class EntityAddress:
    """Derived key and address bound to one entity."""
    entity_id: EntityId
    path: DerivationPath
    key_pair: KeyPair
    address: str

    @property
    def public_key_hex(self) -> str:
        return self.key_pair.public_key_hex


def derive_for_entity(
    seed: bytes,
    root_prefix: PathLike,
    entity: EntityLike,
    network: str = "mainnet",
) -> EntityAddress:
    """
    Derive the key and P2PKH address of an entity.

    Row and column are separate hardened components under ``root_prefix``.
    Identical entity ids map to identical addresses; distinct ids map to
    distinct addresses with overwhelming probability.
    """
    entity_id = to_entity_id(entity)
    path = entity_path(root_prefix, entity_id)
    key_pair = derive(seed, path)
    address = key_pair.address(network)
    logger.debug(f"Derived entity {entity_id} at {path}")
    return EntityAddress(entity_id=entity_id, path=path, key_pair=key_pair, address=address)
