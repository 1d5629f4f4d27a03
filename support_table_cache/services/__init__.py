"""Cache services: key derivation, stores, lookups and invalidation."""
