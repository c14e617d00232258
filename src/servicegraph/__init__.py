"""servicegraph: transactional editor core for service graph documents."""

__version__ = "0.1.0"
