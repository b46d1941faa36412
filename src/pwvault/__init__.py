"""pwvault - A local, offline password vault.
Single-file storage and libsodium cryptography via pynacl.
"""

__version__ = "1.0.0"
