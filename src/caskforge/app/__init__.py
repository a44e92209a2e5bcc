"""Application services built on the descriptor domain."""
