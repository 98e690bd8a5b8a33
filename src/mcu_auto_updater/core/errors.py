"""
Error taxonomy for the update pipeline.

Every fatal condition raised by a pipeline stage derives from UpdaterError
and carries a stable code plus the process exit code reported to the
scheduler. Non-fatal conditions (degraded version decrypt, ambiguous image)
are never raised; they surface as warnings on the run report.
"""


class UpdaterError(Exception):
    """Base exception for fatal pipeline failures."""

    code = "E_UPDATER"
    exit_code = 1


class SourceUnavailable(UpdaterError):
    """Distribution repository could not be pulled."""

    code = "E_SOURCE_UNAVAILABLE"
    exit_code = 10


class ArtifactMissing(UpdaterError):
    """Expected version or package artifact is absent."""

    code = "E_ARTIFACT_MISSING"
    exit_code = 11


class PackageDecryptFailed(UpdaterError):
    """Package archive could not be decrypted or unpacked."""

    code = "E_PACKAGE_DECRYPT"
    exit_code = 12


class ImageNotFound(UpdaterError):
    """No firmware image found after extraction."""

    code = "E_IMAGE_NOT_FOUND"
    exit_code = 13


class SerialUnavailable(UpdaterError):
    """Serial channel could not be opened or configured."""

    code = "E_SERIAL_UNAVAILABLE"
    exit_code = 14


class ConversionFailed(UpdaterError):
    """Firmware image could not be converted to a flat binary."""

    code = "E_CONVERSION"
    exit_code = 15


class FlashFailed(UpdaterError):
    """Programmer reported a non-success outcome."""

    code = "E_FLASH"
    exit_code = 16


class VersionStateCorrupt(UpdaterError):
    """Persisted version file exists but does not hold an integer."""

    code = "E_VERSION_STATE"
    exit_code = 17


class RunLocked(UpdaterError):
    """Another updater run holds the run lock."""

    code = "E_RUN_LOCKED"
    exit_code = 18


class HandshakeCancelled(UpdaterError):
    """Cancellation was requested before the handshake reached READY."""

    code = "E_CANCELLED"
    exit_code = 19


class KeyUnavailable(UpdaterError):
    """Key file is missing, unreadable or empty."""

    code = "E_KEY_UNAVAILABLE"
    exit_code = 20


class DecryptError(Exception):
    """Raised by a Decryptor when ciphertext cannot be decrypted.

    Not an UpdaterError: callers decide whether a failed decrypt is fatal
    (package) or degrades to a default (version artifact).
    """


class SerialLinkError(Exception):
    """Low-level serial read/write failure within an open session."""
