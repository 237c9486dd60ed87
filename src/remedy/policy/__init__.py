"""Path policies enforced on plans and executor output."""

from .exclusions import ExclusionPolicy, patch_header_paths

__all__ = ["ExclusionPolicy", "patch_header_paths"]
