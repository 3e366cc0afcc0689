"""Scene ranking."""

from typing import List, Sequence, Tuple

from app.api.v1.features.imagery.mosaic.schemas import Scene


class SceneSelector:
    """Pick the clearest scenes: lowest cloud cover, then highest sun."""

    def __init__(self, max_scenes: int = 5):
        if max_scenes < 1:
            raise ValueError("max_scenes must be at least 1")
        self.max_scenes = max_scenes

    @staticmethod
    def rank_key(scene: Scene) -> Tuple[float, float]:
        # Unknown cloud cover ranks last; unknown sun elevation loses ties.
        cloud = scene.cloud_cover if scene.cloud_cover is not None else float("inf")
        sun = scene.sun_elevation if scene.sun_elevation is not None else float("-inf")
        return (cloud, -sun)

    def select(self, scenes: Sequence[Scene]) -> List[Scene]:
        return sorted(scenes, key=self.rank_key)[: self.max_scenes]
