"""
Wallet context - the explicit owner of a master seed and its derived keys.

Every operation that needs key material receives a WalletContext; there is
no module-level wallet. The context holds:

- the master seed (never logged, never part of repr)
- the LedgerConfig (network, derivation roots)
- an EntityAddressCache of per-cell addresses derived so far

A context cannot be built without a valid seed. There is no demo mode:
missing credentials fail with ConfigurationError rather than falling back
to a placeholder address.
"""

import os
import threading
from typing import Callable, Dict, List, Optional, Union

from dotenv import dotenv_values

from cellchain.core.config import LedgerConfig
from cellchain.crypto import KeyPair
from cellchain.crypto.hd import (
    DerivationPath,
    EntityAddress,
    EntityId,
    EntityLike,
    derive,
    derive_for_entity,
    master_key,
    parse_path,
    to_entity_id,
)
from cellchain.errors import ConfigurationError
from cellchain.utils.logger import get_logger

logger = get_logger("wallet")

SEED_ENV_VAR = "CELLCHAIN_SEED"

KeyRef = Union[EntityId, DerivationPath, KeyPair, str, tuple]


class EntityAddressCache:
    """
    Per-entity address cache with atomic insert-if-absent.

    Derivation runs outside the lock so different entities derive in
    parallel; the insert is a ``setdefault`` under the lock, so concurrent
    requests for one entity all observe the first stored value.
    """

    def __init__(self):
        self._entries: Dict[EntityId, EntityAddress] = {}
        self._lock = threading.Lock()

    def get(self, entity_id: EntityId) -> Optional[EntityAddress]:
        with self._lock:
            return self._entries.get(entity_id)

    def get_or_create(
        self,
        entity_id: EntityId,
        factory: Callable[[EntityId], EntityAddress],
    ) -> EntityAddress:
        existing = self.get(entity_id)
        if existing is not None:
            return existing

        created = factory(entity_id)
        with self._lock:
            return self._entries.setdefault(entity_id, created)

    def values(self) -> List[EntityAddress]:
        with self._lock:
            return list(self._entries.values())

    def __contains__(self, entity_id: EntityId) -> bool:
        with self._lock:
            return entity_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class WalletContext:
    """
    Seed, configuration and entity-address cache for one wallet.

    Args:
        seed: Master seed bytes (16 to 64 bytes)
        config: Ledger configuration (defaults to LedgerConfig())

    Raises:
        ConfigurationError: seed is missing or malformed
    """

    def __init__(self, seed: bytes, config: Optional[LedgerConfig] = None):
        # Fail fast on a bad seed rather than on first use
        master_key(seed)

        self._seed = bytes(seed)
        self.config = config or LedgerConfig()
        self.cache = EntityAddressCache()
        self._root: Optional[KeyPair] = None

        logger.info(f"Wallet context ready on {self.config.network}")

    @classmethod
    def from_hex(cls, seed_hex: str, config: Optional[LedgerConfig] = None) -> "WalletContext":
        try:
            seed = bytes.fromhex(seed_hex.strip())
        except (AttributeError, ValueError):
            raise ConfigurationError("Master seed is not valid hex") from None
        return cls(seed, config)

    @classmethod
    def from_env(
        cls,
        env_file: Optional[str] = None,
        environ: Optional[Dict[str, str]] = None,
        config: Optional[LedgerConfig] = None,
    ) -> "WalletContext":
        """
        Build a context from the hex seed in ``CELLCHAIN_SEED``.

        A ``.env`` file, when given, supplies the variable if the
        environment does not.

        Raises:
            ConfigurationError: the variable is unset or not a valid seed
        """
        env: Dict[str, Optional[str]] = {}
        if env_file:
            env.update(dotenv_values(env_file))
        env.update(os.environ if environ is None else environ)

        seed_hex = env.get(SEED_ENV_VAR)
        if not seed_hex:
            raise ConfigurationError(f"{SEED_ENV_VAR} is not set; refusing to run without a seed")
        return cls.from_hex(seed_hex, config)

    def __repr__(self) -> str:
        return f"WalletContext(network={self.config.network}, entities={len(self.cache)})"

    # =========================================================================
    # Keys
    # =========================================================================

    def derive(self, path: Union[DerivationPath, str]) -> KeyPair:
        """Derive the keypair at an explicit path."""
        return derive(self._seed, path)

    def root_key(self) -> KeyPair:
        """Wallet root key at ``config.wallet_root_path``."""
        if self._root is None:
            self._root = self.derive(self.config.wallet_root_path)
        return self._root

    def root_address(self) -> str:
        return self.root_key().address(self.config.network)

    def entity_address(self, entity: EntityLike) -> EntityAddress:
        """Derive (or fetch from cache) the address of an entity."""
        entity_id = to_entity_id(entity)
        return self.cache.get_or_create(entity_id, self._derive_entity)

    def _derive_entity(self, entity_id: EntityId) -> EntityAddress:
        return derive_for_entity(
            self._seed,
            self.config.root_prefix,
            entity_id,
            network=self.config.network,
        )

    def key_for(self, ref: KeyRef) -> KeyPair:
        """
        Resolve a spending key reference.

        Accepts an EntityId, a (row, col) tuple, a ``"row,col"`` string,
        a DerivationPath, a path string starting with ``m`` or a KeyPair.

        Raises:
            ConfigurationError: the reference cannot be resolved
        """
        if isinstance(ref, KeyPair):
            return ref
        if isinstance(ref, DerivationPath):
            return self.derive(ref)
        if isinstance(ref, str) and ref.strip().startswith("m"):
            return self.derive(parse_path(ref))
        return self.entity_address(ref).key_pair

    def known_entities(self) -> List[EntityAddress]:
        """Entity addresses derived so far, ordered by (row, col)."""
        return sorted(self.cache.values(), key=lambda e: (e.entity_id.row, e.entity_id.col))
