"""Face recognition against a folder-backed, self-reloading identity database."""

from facewatch.face.matcher import MatchResult, MatchResults
from facewatch.face.recognizer import FaceRecognition
from facewatch.face.registry import IdentityRegistry, LoadStatus

__all__ = [
    "FaceRecognition",
    "IdentityRegistry",
    "LoadStatus",
    "MatchResult",
    "MatchResults",
]

__version__ = "0.1.0"
