"""
Durable state of the proxy.

This package is responsible for:
* The per-provider version ledger (`{provider}:version-index`).
* Extracted package metadata (`{provider}:metadata:{version}-{release}`).
"""
