"""Provisioning run exceptions."""


class FleetError(Exception):
    """Base exception for provisioning run errors."""

    pass


class ProvisionError(FleetError):
    """Fatal error for one instance slot."""

    pass


class InvalidSlotError(ProvisionError, ValueError):
    """Unknown family or index outside 1..max_instances."""

    pass


class MissingCloneSourceError(ProvisionError):
    """The previous index's install directory does not exist."""

    pass


class InstallVerificationError(ProvisionError):
    """Installer finished but the install directory is absent."""

    pass


class InstallerRunError(ProvisionError):
    """Installer could not be started or did not finish in time."""

    pass


class PrerequisiteError(FleetError):
    """A shared prerequisite could not be fetched or installed."""

    pass


class NotElevatedError(FleetError):
    """The run requires administrator rights."""

    pass


class RunAborted(FleetError):
    """The run stopped before completing all stages."""

    pass
