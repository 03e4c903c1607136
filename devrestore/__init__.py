"""Device firmware and filesystem restore over the restored and ASR services."""

__version__ = "0.1.0"
