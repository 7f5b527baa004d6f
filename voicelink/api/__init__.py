"""HTTP API for the credential broker."""
