"""
Cellchain

Embeds spreadsheet records into a UTXO ledger:
- Hardened HD key derivation (one address per cell)
- ECDSA signatures on secp256k1
- Chunked data-carrier and inscription envelopes
- Versioned attestation chains
- Transaction assembly with fee/dust/change accounting
"""

__version__ = "0.1.0"
