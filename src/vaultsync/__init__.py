"""
vaultsync -- continuous secret replication between Vault clusters.

Follows the source Vault's audit stream for real-time changes and
periodically re-reads the whole watched prefix, so the destination
converges even when a change event is missed.
"""

import os

__version__ = "0.1.0"
__author__ = "smilinTux"

DEFAULT_CONFIG = os.environ.get("VAULT_SYNC_CONFIG", "./vault-sync.yaml")
