"""
Video Assembly Errors

Failure conditions raised by the assembly components. Components raise these
and never record them on a job; the job orchestrator is the only place where
they are caught and attached to a job together with the stage that failed.
"""

from pathlib import Path
from typing import Optional, Union


class VideoAssemblyError(Exception):
    """Base class for every assembly pipeline failure"""


class MissingAudioAsset(VideoAssemblyError, FileNotFoundError):
    """A referenced voiceover or background music file is not on disk"""

    def __init__(self, path: Union[str, Path], role: str = "audio"):
        self.path = Path(path)
        self.role = role
        super().__init__(f"Missing {role} file: {self.path}")

    def __str__(self) -> str:
        return f"Missing {self.role} file: {self.path}"


class InvalidTimelineAllocation(VideoAssemblyError, ValueError):
    """Computed durations are non-positive or non-finite"""


class LabelGraphError(VideoAssemblyError):
    """The filter graph references an undefined label or contains a cycle.

    Always a logic defect in the planner, never a problem with user data.
    """

    def __init__(self, message: str, label: Optional[str] = None):
        self.label = label
        super().__init__(message)


class RenderTimeout(VideoAssemblyError):
    """Rendering exceeded the caller-supplied timeout"""

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Rendering exceeded timeout of {timeout_seconds:.1f}s")


class ExecutionFailure(VideoAssemblyError):
    """FFmpeg exited non-zero or did not produce a usable output file"""

    def __init__(self, message: str, returncode: Optional[int] = None, stderr_tail: str = ""):
        self.returncode = returncode
        self.stderr_tail = stderr_tail
        super().__init__(message)


class RenderCancelled(VideoAssemblyError):
    """The renderer stopped because cancellation was requested"""
