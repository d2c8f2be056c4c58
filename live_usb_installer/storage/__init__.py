"""Storage device provisioning: planning, partitioning, formatting, copying."""
