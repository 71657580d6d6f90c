"""instruction-catalog: file-backed instruction store served over JSON-RPC on stdio."""

__version__ = "0.1.0"
