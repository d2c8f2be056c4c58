"""High-level provisioning services built on the storage layer."""
