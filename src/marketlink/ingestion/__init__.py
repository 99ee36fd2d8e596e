"""Platform adapters and the sync orchestrator."""
