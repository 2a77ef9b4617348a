"""External collaborators: AI provider, email transport, integration credentials."""

from integrations.ai_provider import AICompletion, AIProvider, AIProviderError, HttpAIProvider
from integrations.credentials import CredentialProvider, EnvCredentialProvider, InMemoryCredentialProvider
from integrations.email_transport import EmailTransport, HttpEmailTransport

__all__ = [
    "AICompletion",
    "AIProvider",
    "AIProviderError",
    "HttpAIProvider",
    "CredentialProvider",
    "EnvCredentialProvider",
    "InMemoryCredentialProvider",
    "EmailTransport",
    "HttpEmailTransport",
]
