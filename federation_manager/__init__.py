"""Federation manager: member cluster health and federated reconciliation."""

__version__ = "0.1.0"
