"""kubenav: a multi-context Kubernetes resource browser core."""

__version__ = "0.1.0"
