"""caskforge: Homebrew-style cask descriptors, validation and lifecycle planning."""

__version__ = "0.3.0"

__all__ = ["__version__"]
