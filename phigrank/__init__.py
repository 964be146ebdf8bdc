"""Phigros song lookup, RKS and push-accuracy calculation, cloud saves, player archives and account bindings."""

__version__ = "1.2.0"