from cotiz.infrastructure.repositories.base import BaseRepository, ClientScopeRequiredError

__all__ = ["BaseRepository", "ClientScopeRequiredError"]
