"""Usage pipeline services."""
