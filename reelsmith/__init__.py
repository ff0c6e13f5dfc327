"""
Reelsmith

Short-form vertical video assembly: timeline, captions, audio mix and the
FFmpeg composition plan, driven by a job orchestrator.
"""

__version__ = "0.1.0"
