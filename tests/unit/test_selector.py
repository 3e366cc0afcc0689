import pytest

from app.api.v1.features.imagery.mosaic.schemas import Scene
from app.api.v1.features.imagery.mosaic.selector import SceneSelector


class TestSceneSelector:
    """Test cases for scene ranking."""

    def test_lowest_cloud_cover_first(self):
        clouds = [5, 12, 30, 8, 3, 19, 25, 11]
        scenes = [Scene(id=f"s{c}", cloud_cover=c) for c in clouds]

        selected = SceneSelector(max_scenes=5).select(scenes)

        assert [s.cloud_cover for s in selected] == [3, 5, 8, 11, 12]

    def test_sun_elevation_breaks_ties(self):
        scenes = [
            Scene(id="low-sun", cloud_cover=2.0, sun_elevation=20.0),
            Scene(id="high-sun", cloud_cover=2.0, sun_elevation=60.0),
            Scene(id="no-sun", cloud_cover=2.0),
        ]

        selected = SceneSelector().select(scenes)

        assert [s.id for s in selected] == ["high-sun", "low-sun", "no-sun"]

    def test_missing_cloud_cover_ranks_last(self):
        scenes = [
            Scene(id="unknown"),
            Scene(id="cloudy", cloud_cover=19.9),
        ]

        assert [s.id for s in SceneSelector().select(scenes)] == ["cloudy", "unknown"]

    def test_fewer_scenes_than_limit(self):
        scenes = [Scene(id="only", cloud_cover=1.0)]
        assert SceneSelector(max_scenes=5).select(scenes) == scenes

    def test_input_is_not_mutated(self):
        scenes = [Scene(id="b", cloud_cover=9), Scene(id="a", cloud_cover=1)]
        SceneSelector().select(scenes)
        assert [s.id for s in scenes] == ["b", "a"]

    def test_max_scenes_must_be_positive(self):
        with pytest.raises(ValueError):
            SceneSelector(max_scenes=0)
