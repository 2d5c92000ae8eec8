"""Pipeline tooling: step cache, dependency graphs, hub store, hub and login clients."""

__version__ = "0.1.0"