from bundle_registry.auth.credentials import (
    CredentialResolver,
    CredentialState,
    SessionProvider,
)

__all__ = ["CredentialResolver", "CredentialState", "SessionProvider"]
