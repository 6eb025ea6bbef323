from .credentials import CredentialPool, CredentialSource, PoolInfo
from .session import AuthSession, Identity

__all__ = [
    "AuthSession",
    "CredentialPool",
    "CredentialSource",
    "Identity",
    "PoolInfo",
]
