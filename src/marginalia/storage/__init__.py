"""Storage backends — the install-local cache and remote document stores."""
