"""Kubeconfig parsing.

Only the context list is read here; credentials are resolved later by
kubernetes_asyncio when a context is actually loaded.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

import yaml

from kubenav.errors import ConfigError
from kubenav.models.progress import ContextInfo


@dataclass(frozen=True)
class Kubeconfig:
    path: str
    contexts: tuple[ContextInfo, ...]
    current_context: str = ""

    def names(self) -> list[str]:
        return [c.name for c in self.contexts]

    def find(self, name: str) -> ContextInfo | None:
        for info in self.contexts:
            if info.name == name:
                return info
        return None


def parse_kubeconfig(path: str) -> Kubeconfig:
    """Read the context list from a kubeconfig file.

    Raises:
        ConfigError: the file is missing, unreadable, not YAML, or has no
            usable ``contexts`` list.
    """
    path = os.path.expanduser(path)
    try:
        with open(path, encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except FileNotFoundError as exc:
        raise ConfigError(f"kubeconfig not found: {path}", path=path) from exc
    except OSError as exc:
        raise ConfigError(f"cannot read kubeconfig {path}: {exc}", path=path) from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"cannot parse kubeconfig {path}: {exc}", path=path) from exc

    if not isinstance(data, dict):
        raise ConfigError(f"kubeconfig {path} is not a mapping", path=path)

    raw_contexts = data.get("contexts") or []
    if not isinstance(raw_contexts, list):
        raise ConfigError(f"kubeconfig {path}: 'contexts' must be a list", path=path)

    contexts = []
    for entry in raw_contexts:
        if not isinstance(entry, dict) or not entry.get("name"):
            raise ConfigError(f"kubeconfig {path}: context entry without a name", path=path)
        ctx = entry.get("context") or {}
        contexts.append(
            ContextInfo(
                name=str(entry["name"]),
                cluster=str(ctx.get("cluster") or ""),
                user=str(ctx.get("user") or ""),
                namespace=str(ctx.get("namespace") or ""),
            )
        )

    return Kubeconfig(
        path=path,
        contexts=tuple(contexts),
        current_context=str(data.get("current-context") or ""),
    )
