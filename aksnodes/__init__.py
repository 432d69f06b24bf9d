"""Instance types, pricing, load balancer pools and launch templates for AKS nodes."""

__version__ = "0.1.0"