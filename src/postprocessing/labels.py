"""
Class index to sign label table.
"""

from __future__ import annotations

import logging
import os
from typing import Dict, Iterator, List, Mapping, Optional, Tuple

import yaml

from models.config import PostprocessConfig
from models.errors import ConfigError


class LabelTable:
    """Fixed mapping of class ids to human-readable sign labels."""

    def __init__(self, labels: Mapping[int, str]):
        self._labels: Dict[int, str] = {int(k): str(v) for k, v in labels.items()}

    @classmethod
    def from_list(cls, names: List[str]) -> "LabelTable":
        return cls({i: name for i, name in enumerate(names)})

    @classmethod
    def from_file(cls, path: str) -> "LabelTable":
        """
        Load labels from a text file (one label per line) or a YAML file.

        YAML files may hold a list, a mapping, or a mapping with a `names`
        key as written by common detector training tools.
        """
        if not os.path.isfile(path):
            raise ConfigError(f"Labels file not found: {path}")

        with open(path, "r", encoding="utf-8") as f:
            if path.lower().endswith((".yaml", ".yml")):
                try:
                    data = yaml.safe_load(f)
                except yaml.YAMLError as e:
                    raise ConfigError(f"Invalid labels file {path}: {e}") from e
                if isinstance(data, dict) and "names" in data:
                    data = data["names"]
                if isinstance(data, list):
                    return cls.from_list([str(x) for x in data])
                if isinstance(data, dict):
                    try:
                        return cls({int(k): str(v) for k, v in data.items()})
                    except (TypeError, ValueError) as e:
                        raise ConfigError(f"Label ids in {path} must be integers") from e
                raise ConfigError(f"Labels file {path} must contain a list or a mapping")

            names = [line.strip() for line in f if line.strip()]
        return cls.from_list(names)

    @classmethod
    def from_config(cls, cfg: PostprocessConfig) -> "LabelTable":
        """Labels file first, then inline labels on top."""
        labels: Dict[int, str] = {}
        if cfg.labels_file:
            labels.update(cls.from_file(cfg.labels_file)._labels)
        if cfg.labels:
            labels.update(cfg.labels)
        if not labels:
            raise ConfigError("Label table is empty")
        logging.info(f"Label table loaded: {len(labels)} classes")
        return cls(labels)

    def get(self, class_id: int) -> Optional[str]:
        return self._labels.get(int(class_id))

    def __contains__(self, class_id: object) -> bool:
        return class_id in self._labels

    def __len__(self) -> int:
        return len(self._labels)

    @property
    def num_classes(self) -> int:
        """Class count implied by the highest id, so sparse tables still size the score vector."""
        return max(self._labels) + 1 if self._labels else 0

    def __iter__(self) -> Iterator[Tuple[int, str]]:
        return iter(sorted(self._labels.items()))
