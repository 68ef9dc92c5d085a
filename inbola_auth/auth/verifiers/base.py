from abc import ABC, abstractmethod
from typing import Any
from inbola_auth.auth.models import VerifiedIdentity
from inbola_auth.schema.full_schema import AuthProvider


class Verifier(ABC):
    """Checks one provider's proof of identity.

    Implementations raise an ``AuthError`` subclass (InvalidProof, ExpiredProof,
    ProviderUnavailable ...) and return a ``VerifiedIdentity`` only on success.
    """
    provider: AuthProvider

    @abstractmethod
    async def verify(self, proof: Any) -> VerifiedIdentity:
        ...
