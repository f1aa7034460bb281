"""rpchat — local roleplay chat client core."""
