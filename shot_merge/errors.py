class ShotMergeError(Exception):
    """Base error for the project."""


class ScanError(ShotMergeError):
    """The work directory could not be listed."""


class ImageToolError(ShotMergeError):
    """The image backend failed to read or write an image."""


class MergeError(ImageToolError):
    """Cropping or compositing a pair failed."""
