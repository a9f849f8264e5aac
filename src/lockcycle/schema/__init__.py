"""SQL schema resources for the lockcycle record store."""
