from __future__ import annotations


class KillClipError(Exception):
    """Base class for every error raised by killclip."""


class MalformedInputError(KillClipError, ValueError):
    """A pixel buffer does not match its declared dimensions."""


class ConfigurationError(KillClipError, ValueError):
    """Settings are out of range; raised before any frame is processed."""


class PersistenceError(KillClipError, RuntimeError):
    """A project file is missing or structurally invalid."""


class ExternalCollaboratorError(KillClipError, RuntimeError):
    """ffmpeg, ffprobe or OpenCV failed while extracting or encoding media."""
