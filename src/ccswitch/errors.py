"""Error types shared by the scanner, toggle protocol, profile store and switch engine."""

from __future__ import annotations


class CCSwitchError(RuntimeError):
    """Base error for ccswitch operations."""

    kind = "error"


class NotFoundError(CCSwitchError):
    """Raised when a profile, definition or artifact does not exist."""

    kind = "not_found"


class ConflictError(CCSwitchError):
    """Raised when an operation would clobber something that already exists."""

    kind = "conflict"


class NotControllableError(CCSwitchError):
    """Raised when mutating a definition its scope does not allow us to touch."""

    kind = "not_controllable"


class MalformedError(CCSwitchError):
    """Raised when structured content (JSON/YAML) cannot be parsed."""

    kind = "malformed"

    def __init__(self, path, detail: str):
        self.path = path
        self.detail = detail
        super().__init__(f"Malformed content in {path}: {detail}")


class IOFailureError(CCSwitchError):
    """Raised when a filesystem read, write or rename fails."""

    kind = "io_failure"


class InconsistentError(CCSwitchError):
    """Raised when the live config write failed after the backup was captured.

    The original configuration is safe in the backup, but the live file may
    not match any profile. The caller must retry or restore explicitly.
    """

    kind = "inconsistent"

    def __init__(self, slot: str, profile_id: str | None, cause: BaseException | None = None):
        self.slot = slot
        self.profile_id = profile_id
        self.cause = cause
        self.guidance = (
            f"The original '{slot}' configuration is preserved in the backup. "
            "Run `ccswitch profile recover` to finish the interrupted switch, "
            "or `ccswitch profile restore` to return to the original."
        )
        target = f"profile '{profile_id}'" if profile_id else "the original configuration"
        detail = f": {cause}" if cause else ""
        super().__init__(f"Slot '{slot}' is inconsistent while applying {target}{detail}")


class ScanCancelledError(CCSwitchError):
    """Raised when a scan was superseded by a newer request."""

    kind = "cancelled"
