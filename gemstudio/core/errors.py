from typing import List, Optional


class StudioError(Exception):
    """Base class for every error raised by the studio pipeline."""


# Image preparation
class EncodingError(StudioError):
    pass


class FetchError(StudioError):
    def __init__(self, message: str, url: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


# Compositor
class RenderContextUnavailable(StudioError):
    """The raster backend could not produce a drawing surface for the source image."""


class LogoLoadError(StudioError):
    """The watermark logo could not be loaded. Always recovered by the compositor."""


# Photoshoot fan-out (per angle)
class SafetyBlocked(StudioError):
    pass


class NoImageReturned(StudioError):
    def __init__(self, message: str, text_excerpt: Optional[str] = None):
        super().__init__(message)
        self.text_excerpt = text_excerpt


class GenerationTimeout(StudioError):
    pass


class GenerationFailed(StudioError):
    """Raised only when every angle of a photoshoot failed."""

    def __init__(self, message: str, failures: Optional[List] = None):
        super().__init__(message)
        self.failures = failures or []


# Video operation
class SubmissionFailed(StudioError):
    pass


class PollFailed(StudioError):
    pass


class MissingAsset(StudioError):
    pass


class VideoCancelled(StudioError):
    pass


# Studio access gate
class AccessDenied(StudioError):
    pass


class AccessExpired(AccessDenied):
    pass


class FeatureDisabled(AccessDenied):
    pass


class InsufficientCredits(AccessDenied):
    pass
