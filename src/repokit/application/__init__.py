"""Application layer: contracts between the repository engine and its backends."""
