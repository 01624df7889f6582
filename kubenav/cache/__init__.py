"""Multi-context resource cache for kubenav.

Submodules:
    kinds       -- Immutable registry of the 16 cached resource kinds.
    selectors   -- Label selector parsing and matching.
    transforms  -- Raw object -> typed row conversion and index functions.
    informer    -- InformerCache (indexed store) and Informer (list/watch task).
    client      -- ClusterClient interface and its kubernetes_asyncio implementation.
    kubeconfig  -- Context list parsing.
    repository  -- Per-context Repository: cached reads and live mutations.
    loader      -- Context load state machine.
    pool        -- RepositoryPool: bounded LRU set of repositories.
"""

from kubenav.cache.pool import RepositoryPool
from kubenav.cache.repository import Repository

__all__ = ["Repository", "RepositoryPool"]
