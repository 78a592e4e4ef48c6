from __future__ import annotations

import weakref

from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

import numpy as np

from facewatch import config
from facewatch.face.extractor import ExtractorConfig, FaceExtractor, create_extractor
from facewatch.face.matcher import Matcher, MatcherConfig, MatchResult, MatchResults
from facewatch.face.registry import IdentityRegistry, LoadStatus, RegistryConfig, RegistryLoader
from facewatch.face.watcher import DirectoryWatcher
from facewatch.utils.draw import annotate_faces
from facewatch.utils.log import get_logger

logger = get_logger(__name__)

PathLike = Union[str, Path]


class FaceRecognition:
    """
    Recognize faces against a persons database folder kept in sync with disk.

    The database folder holds one sub-folder per person, named after them, with
    one or more face images inside::

        db/
          alice/  01.jpg 02.jpg
          bob/    a.png

    Typical use::

        with FaceRecognition(backend="sface") as fr:
            fr.load_persons_db("db")
            fr.start_watching(5)
            names = fr.run(frame, threshold=0.4)

    Leaving the `with` block (or calling `close`) stops the watcher thread.
    """

    def __init__(
        self,
        extractor: Optional[FaceExtractor] = None,
        backend: str = "insightface",
        extractor_config: Optional[ExtractorConfig] = None,
        registry_config: Optional[RegistryConfig] = None,
        matcher_config: Optional[MatcherConfig] = None,
    ):
        """
        Args:
            extractor: ready-made vision backend; built from `backend` when omitted
            backend: 'insightface' or 'sface'
            extractor_config: model paths / resize settings for the backend
            registry_config: database loading options
            matcher_config: default threshold and unknown label
        """
        logger.debug("Initializing face recognition")
        self.extractor = extractor if extractor is not None else create_extractor(backend, extractor_config)
        self._loader = RegistryLoader(self.extractor, registry_config)
        self._matcher = Matcher(self.extractor.similarity, matcher_config)

        # The watcher thread only holds a weak reference, so dropping the last
        # reference to this object still runs __del__ and stops the thread.
        self_ref = weakref.ref(self)

        def _on_change(path: Path) -> None:
            owner = self_ref()
            if owner is not None:
                owner._loader.load(path, force=True, visualize=False)

        self._watcher = DirectoryWatcher(_on_change)

    # ---- database ----

    @property
    def db_path(self) -> Optional[Path]:
        return self._loader.path

    def set_db_path(self, path: PathLike) -> None:
        """Switch folders without loading; status drops to NOT_LOADED."""
        with self._rewatch(Path(path)):
            self._loader.set_path(path)

    @property
    def load_status(self) -> LoadStatus:
        return self._loader.status

    @property
    def registry(self) -> IdentityRegistry:
        """Current registry generation (immutable snapshot)."""
        return self._loader.registry

    def load_persons_db(self, path: PathLike, force: bool = False, visualize: bool = False) -> IdentityRegistry:
        """
        Load the persons database.

        Args:
            path: database folder
            force: rebuild even if this folder is already loaded
            visualize: also write `<stem>_visualize<ext>` next to each image with the detections drawn

        Raises:
            FileNotFoundError / NotADirectoryError: `path` is not an existing folder
        """
        with self._rewatch(Path(path)):
            return self._loader.load(path, force=force, visualize=visualize)

    def get_registry_info(self) -> Dict:
        registry = self.registry
        return {
            "db_path": str(self.db_path) if self.db_path is not None else None,
            "status": str(self.load_status),
            "total_persons": len(registry),
            "person_names": list(registry.keys()),
            "embeddings_per_person": {name: len(embs) for name, embs in registry.items()},
            "watching": self.is_watching,
        }

    # ---- watcher ----

    @property
    def is_watching(self) -> bool:
        return self._watcher.running

    def start_watching(self, check_interval: float = config.DEFAULT_CHECK_INTERVAL) -> bool:
        """Reload the database whenever files under it change. Needs a path from a prior load."""
        path = self.db_path
        if path is None:
            logger.error("Cannot start watching: no database path set")
            return False
        return self._watcher.start(path, check_interval)

    def stop_watching(self) -> None:
        self._watcher.stop()

    @contextmanager
    def _rewatch(self, new_path: Path) -> Iterator[None]:
        """Move a running watcher over to `new_path` around a path change."""
        interval = None
        if self._watcher.running and self._watcher.path != new_path:
            interval = self._watcher.interval
            self._watcher.stop()
        try:
            yield
        finally:
            if interval is not None:
                self._watcher.start(new_path, interval)

    # ---- matching ----

    def find_best_match(self, embedding: np.ndarray, threshold: float = config.DEFAULT_THRESHOLD) -> MatchResults:
        return self._matcher.find_best_match(embedding, self.registry, threshold=threshold)

    def run(
        self, frame: np.ndarray, threshold: float = config.DEFAULT_RUN_THRESHOLD, visualize: bool = False
    ) -> List[MatchResult]:
        """
        Detect and identify every face in a frame.

        Args:
            frame: BGR image; annotated in place when `visualize` is set
            threshold: minimum similarity for a name to be assigned

        Returns:
            Best match per detected face, in detection order
        """
        faces = self.extractor.extract(frame)
        registry = self.registry

        results: List[MatchResult] = []
        for i, face in enumerate(faces, start=1):
            best = self._matcher.find_best_match(face.embedding, registry, threshold=threshold).best
            face.name = best.name
            logger.info(f"Face {i} best match: {face.name}")
            results.append(best)

        if visualize:
            annotate_faces(frame, faces)
        return results

    def run_one_face(
        self, frame: np.ndarray, threshold: float = config.DEFAULT_RUN_THRESHOLD, visualize: bool = False
    ) -> MatchResult:
        """Best match among all faces in the frame; unknown when there are none."""
        results = self.run(frame, threshold=threshold, visualize=visualize)
        if not results:
            return MatchResult(self._matcher.config.unknown_label, 0.0)
        best = results[0]
        for result in results:
            if result.score > best.score:
                best = result
        return best

    # ---- lifecycle ----

    def close(self) -> None:
        self.stop_watching()

    def __enter__(self) -> "FaceRecognition":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __del__(self):
        watcher = self.__dict__.get("_watcher")
        if watcher is not None:
            watcher.stop()

