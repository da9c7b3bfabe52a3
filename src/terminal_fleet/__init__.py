"""Terminal Fleet: provisioning, plugin updates and paced launches for numbered trading terminals."""

__version__ = "0.1.0"
