"""External service integrations: credential minting and realtime transport."""
