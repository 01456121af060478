"""Client side of immichsync: API client, persistent state, sync engine and CLI."""
