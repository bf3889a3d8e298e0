"""
Application records - payloads produced from spreadsheet activity.

Two record shapes are stored on the ledger:

- Cell edit: ``{row, col, value, timestamp, address}`` for one cell, where
  ``address`` is the cell's derived P2PKH address.
- Document snapshot (``spreadsheet.nft``): the whole sheet plus a signature
  by the wallet root key over the canonical JSON of its ``data`` section,
  so a snapshot can be checked without trusting whoever relays it.

Canonical JSON uses sorted keys and compact separators.
"""

import json
import time
from typing import Any, Dict, Optional

from cellchain.core.envelope import Payload
from cellchain.crypto import hex_to_bytes, sha256, sign, verify
from cellchain.crypto.hd import EntityId
from cellchain.errors import EncodingError

JSON_CONTENT_TYPE = "application/json"

SNAPSHOT_TYPE = "spreadsheet.nft"
SNAPSHOT_VERSION = "1.0"
SNAPSHOT_PROTOCOL = "BAP"

SNAPSHOT_FIELDS = ("title", "cells", "formulas", "styles")
METADATA_FIELDS = ("created", "modified", "owner")


def canonical_json(value: Any) -> bytes:
    try:
        return json.dumps(value, sort_keys=True, separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise EncodingError(f"Record is not JSON serializable: {exc}") from exc


def cell_edit_payload(
    row: int,
    col: int,
    value: Any,
    address: str,
    timestamp: Optional[int] = None,
) -> Payload:
    """
    Payload recording one cell edit.

    Args:
        row: Cell row
        col: Cell column
        value: New cell value (any JSON value)
        address: The cell's derived address
        timestamp: Milliseconds since the epoch (defaults to now)
    """
    entity = EntityId(row, col)
    record = {
        "row": entity.row,
        "col": entity.col,
        "value": value,
        "timestamp": int(time.time() * 1000) if timestamp is None else timestamp,
        "address": address,
    }
    return Payload(canonical_json(record), JSON_CONTENT_TYPE)


def snapshot_payload(document: Dict[str, Any], wallet, include_entity_addresses: bool = False) -> Payload:
    """
    Payload holding a signed whole-document snapshot.

    Args:
        document: Sheet with title/cells/formulas/styles and
            created/modified/owner metadata (missing fields become null)
        wallet: WalletContext whose root key signs the snapshot
        include_entity_addresses: List the cell addresses derived so far
    """
    data = {name: document.get(name) for name in SNAPSHOT_FIELDS}
    data["metadata"] = {name: document.get(name) for name in METADATA_FIELDS}

    root = wallet.root_key()
    signature = sign(sha256(canonical_json(data)), root.private_key)

    snapshot = {
        "type": SNAPSHOT_TYPE,
        "version": SNAPSHOT_VERSION,
        "protocol": SNAPSHOT_PROTOCOL,
        "data": data,
        "signature": signature.hex(),
        "publicKey": root.public_key_hex,
    }
    if include_entity_addresses:
        snapshot["cellAddresses"] = [
            {"cell": str(entry.entity_id), "address": entry.address, "path": str(entry.path)}
            for entry in wallet.known_entities()
        ]

    return Payload(canonical_json(snapshot), JSON_CONTENT_TYPE)


def verify_snapshot(payload: Payload, public_key: Optional[bytes] = None) -> bool:
    """
    Check a snapshot's signature.

    Args:
        payload: Snapshot payload
        public_key: Expected signer; defaults to the key embedded in the snapshot

    Returns:
        True if the signature matches, False for any malformed snapshot
    """
    try:
        snapshot = json.loads(payload.data.decode("utf-8"))
        if snapshot.get("type") != SNAPSHOT_TYPE:
            return False
        signature = hex_to_bytes(snapshot["signature"])
        signer = public_key if public_key is not None else hex_to_bytes(snapshot["publicKey"])
        digest = sha256(canonical_json(snapshot["data"]))
    except (UnicodeDecodeError, ValueError, KeyError, TypeError, AttributeError, EncodingError):
        return False
    return verify(digest, signature, signer)
