from cotacoes.infrastructure.repositories.base import BaseRepository, TenantScopeRequiredError

__all__ = ["BaseRepository", "TenantScopeRequiredError"]
