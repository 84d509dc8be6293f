"""Transport-facing pieces of the stdio JSON-RPC front: protocol contract and result types."""
