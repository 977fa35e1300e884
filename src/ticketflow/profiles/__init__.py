"""Repository profiles used as planning prompt context."""

from .loader import ProfileLoadError, ProfileLoader, load_profiles
from .models import RepoProfile

__all__ = ["ProfileLoadError", "ProfileLoader", "RepoProfile", "load_profiles"]
