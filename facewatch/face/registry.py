from __future__ import annotations

import enum
import threading

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple, Union

import cv2
import numpy as np

from facewatch import config
from facewatch.face.extractor import DetectedFace, FaceExtractor
from facewatch.utils.draw import annotate_faces
from facewatch.utils.log import get_logger

logger = get_logger(__name__)

PathLike = Union[str, Path]


class LoadStatus(enum.Enum):
    NOT_LOADED = "NOT_LOADED"
    LOADING = "LOADING"
    LOADED = "LOADED"

    def __str__(self) -> str:
        return self.value


class IdentityRegistry(Mapping):
    """One immutable generation of the identity -> embeddings mapping.

    Identities keep the order they were loaded in (sorted folder names) and
    each identity keeps its embeddings in file order, so iteration is
    deterministic. Stored arrays are read-only copies.
    """

    def __init__(self, people: Optional[Dict[str, Iterable[np.ndarray]]] = None):
        frozen: Dict[str, Tuple[np.ndarray, ...]] = {}
        for name, embs in (people or {}).items():
            items = []
            for emb in embs:
                arr = np.array(emb, dtype=np.float32).reshape(-1)
                arr.flags.writeable = False
                items.append(arr)
            frozen[str(name)] = tuple(items)
        self._people = frozen

    @classmethod
    def empty(cls) -> "IdentityRegistry":
        return cls()

    def __getitem__(self, name: str) -> Tuple[np.ndarray, ...]:
        return self._people[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._people)

    def __len__(self) -> int:
        return len(self._people)

    def pairs(self) -> Iterator[Tuple[str, np.ndarray]]:
        """Yield every (identity, embedding) pair in registry order."""
        for name, embs in self._people.items():
            for emb in embs:
                yield name, emb

    @property
    def embedding_count(self) -> int:
        return sum(len(embs) for embs in self._people.values())

    def __repr__(self) -> str:
        return f"IdentityRegistry(identities={len(self)}, embeddings={self.embedding_count})"


@dataclass
class RegistryConfig:
    # Files whose name contains this marker are our own visualization output.
    visualize_suffix: str = config.VISUALIZE_SUFFIX


class RegistryLoader:
    """Owns the current registry generation and the load status.

    `load` is the only writer. Load passes are serialized by `_load_lock`; the
    finished registry is published with a single reference assignment, so
    readers holding `registry` always see one complete generation.
    """

    def __init__(self, extractor: FaceExtractor, cfg: Optional[RegistryConfig] = None):
        self.extractor = extractor
        self.config = cfg or RegistryConfig()
        self._load_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._status = LoadStatus.NOT_LOADED
        self._path: Optional[Path] = None
        self._registry = IdentityRegistry.empty()

    @property
    def status(self) -> LoadStatus:
        with self._state_lock:
            return self._status

    @property
    def path(self) -> Optional[Path]:
        with self._state_lock:
            return self._path

    @property
    def registry(self) -> IdentityRegistry:
        return self._registry

    def set_path(self, path: PathLike) -> None:
        """Point at another database folder; the current registry becomes stale."""
        with self._state_lock:
            self._status = LoadStatus.NOT_LOADED
            self._path = Path(path)

    def load(self, path: PathLike, force: bool = False, visualize: bool = False) -> IdentityRegistry:
        """Rebuild the registry from `path` (one sub-folder of images per identity).

        No-op when the same path is already loaded and `force` is False.

        Raises:
            FileNotFoundError / NotADirectoryError: `path` is missing or not a folder.
        """
        root = Path(path)
        with self._load_lock:
            with self._state_lock:
                if self._path is None:
                    logger.debug(f"Database path set to {root}")
                    self._status = LoadStatus.NOT_LOADED
                elif self._path != root:
                    logger.debug("Database path changed, reloading...")
                    self._status = LoadStatus.NOT_LOADED
                self._path = root

                if self._status is LoadStatus.LOADED and not force:
                    logger.debug(f"Persons DB already loaded, skipping (status={self._status}, force={force})")
                    return self._registry
                self._status = LoadStatus.LOADING

            logger.debug(f"Loading persons DB from {root}")
            try:
                registry = self._build(root, visualize)
            except Exception:
                with self._state_lock:
                    self._registry = IdentityRegistry.empty()
                    self._status = LoadStatus.NOT_LOADED
                raise

            with self._state_lock:
                self._registry = registry
                self._status = LoadStatus.LOADED
            logger.info(f"Persons DB loaded: {len(registry)} identities, {registry.embedding_count} embeddings")
            return registry

    def _build(self, root: Path, visualize: bool) -> IdentityRegistry:
        if not root.exists():
            raise FileNotFoundError(f"Database folder not found: {root}")
        if not root.is_dir():
            raise NotADirectoryError(f"Database path is not a folder: {root}")

        people: Dict[str, List[np.ndarray]] = {}
        for entry in sorted(root.iterdir(), key=lambda p: p.name):
            if not entry.is_dir():
                logger.error(f"Unexpected file: {entry}")
                continue

            name = entry.name
            logger.debug(f"Loading person: {name}")
            embeddings: List[np.ndarray] = []
            try:
                image_files = sorted(entry.iterdir(), key=lambda p: p.name)
            except OSError as e:
                logger.error(f"Cannot list {entry}: {e}")
                image_files = []

            for img_path in image_files:
                embeddings.extend(self._embed_image(img_path, name, visualize))
            people[name] = embeddings

        return IdentityRegistry(people)

    def _embed_image(self, img_path: Path, name: str, visualize: bool) -> List[np.ndarray]:
        if img_path.is_dir():
            logger.error(f"Unexpected sub-directory: {img_path}")
            return []
        if self.config.visualize_suffix in img_path.name:
            return []

        logger.debug(f"Loading image: {img_path} for person {name}")
        try:
            image = cv2.imread(str(img_path))
            if image is None:
                logger.error(f"Cannot read image: {img_path}")
                return []
            faces = self.extractor.extract(image)
            if visualize:
                self._write_visualization(img_path, image, faces)
            return [face.embedding for face in faces]
        except Exception as e:
            logger.error(f"Failed to process {img_path}: {e}")
            return []

    def _write_visualization(self, img_path: Path, image: np.ndarray, faces: List[DetectedFace]) -> None:
        out_path = img_path.with_name(f"{img_path.stem}{self.config.visualize_suffix}{img_path.suffix}")
        canvas = image.copy()
        annotate_faces(canvas, faces, with_names=False)
        if not cv2.imwrite(str(out_path), canvas):
            logger.error(f"Cannot write visualization: {out_path}")
