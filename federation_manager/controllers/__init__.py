"""Controllers built on the federated informer, deliverer and worker."""
