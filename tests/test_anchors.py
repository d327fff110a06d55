"""
Anchor grid tests.
"""

import dataclasses

import numpy as np
import pytest

from hand_detection.anchors import PALM_ANCHOR_CONFIG, AnchorConfig, generate_anchors


class TestPalmAnchors:
    """The reference palm configuration."""

    def test_anchor_count(self, palm_anchors):
        """24x24x2 + 12x12x6 anchors."""
        assert palm_anchors.shape == (2016, 4)

    def test_fixed_size(self, palm_anchors):
        """Every anchor has unit width and height."""
        assert np.all(palm_anchors[:, 2] == 1.0)
        assert np.all(palm_anchors[:, 3] == 1.0)

    def test_centers_in_unit_square(self, palm_anchors):
        assert np.all((palm_anchors[:, :2] > 0.0) & (palm_anchors[:, :2] < 1.0))

    def test_first_group_order(self, palm_anchors):
        """Row-major over the 24x24 map, two anchors per cell."""
        np.testing.assert_allclose(palm_anchors[0, :2], [0.5 / 24, 0.5 / 24])
        np.testing.assert_allclose(palm_anchors[1, :2], [0.5 / 24, 0.5 / 24])
        np.testing.assert_allclose(palm_anchors[2, :2], [1.5 / 24, 0.5 / 24])
        np.testing.assert_allclose(palm_anchors[48, :2], [0.5 / 24, 1.5 / 24])

    def test_second_group_starts_after_first(self, palm_anchors):
        """Stride-16 layers share one 12x12 map with six anchors per cell."""
        np.testing.assert_allclose(palm_anchors[1152:1158, :2], [[0.5 / 12, 0.5 / 12]] * 6)
        np.testing.assert_allclose(palm_anchors[-1, :2], [11.5 / 12, 11.5 / 12])

    def test_deterministic(self):
        a = generate_anchors(PALM_ANCHOR_CONFIG)
        b = generate_anchors(PALM_ANCHOR_CONFIG)
        np.testing.assert_array_equal(a, b)

    def test_read_only(self, palm_anchors):
        with pytest.raises(ValueError):
            palm_anchors[0, 0] = 0.0


class TestAnchorVariants:
    """Configuration switches."""

    def test_variable_size_uses_scales(self):
        cfg = dataclasses.replace(PALM_ANCHOR_CONFIG, fixed_anchor_size=False)
        anchors = generate_anchors(cfg)
        assert anchors.shape == (2016, 4)
        # First anchor of the first cell uses min_scale at aspect ratio 1.
        assert anchors[0, 2] == pytest.approx(PALM_ANCHOR_CONFIG.min_scale)
        assert anchors[0, 3] == pytest.approx(PALM_ANCHOR_CONFIG.min_scale)

    def test_reduce_boxes_in_lowest_layer(self):
        """The lowest layer gets three fixed boxes and no interpolated one."""
        cfg = dataclasses.replace(PALM_ANCHOR_CONFIG, reduce_boxes_in_lowest_layer=True)
        anchors = generate_anchors(cfg)
        assert anchors.shape == (24 * 24 * 3 + 12 * 12 * 6, 4)

    def test_no_interpolated_anchor(self):
        cfg = dataclasses.replace(PALM_ANCHOR_CONFIG, interpolated_scale_aspect_ratio=0.0)
        anchors = generate_anchors(cfg)
        assert anchors.shape == (24 * 24 * 1 + 12 * 12 * 3, 4)

    def test_single_stride(self):
        cfg = AnchorConfig(
            num_layers=1,
            min_scale=0.2,
            max_scale=0.8,
            input_size_height=64,
            input_size_width=32,
            anchor_offset_x=0.5,
            anchor_offset_y=0.5,
            strides=(16,),
            aspect_ratios=(1.0,),
        )
        anchors = generate_anchors(cfg)
        assert anchors.shape == (4 * 2 * 2, 4)


class TestAnchorValidation:
    """Malformed configurations are rejected rather than producing an empty grid."""

    def test_empty_strides(self):
        cfg = dataclasses.replace(PALM_ANCHOR_CONFIG, num_layers=0, strides=())
        with pytest.raises(ValueError, match="strides"):
            generate_anchors(cfg)

    def test_layer_count_mismatch(self):
        cfg = dataclasses.replace(PALM_ANCHOR_CONFIG, num_layers=3)
        with pytest.raises(ValueError, match="num_layers"):
            generate_anchors(cfg)

    def test_non_positive_stride(self):
        cfg = dataclasses.replace(PALM_ANCHOR_CONFIG, strides=(8, 0, 16, 16))
        with pytest.raises(ValueError):
            generate_anchors(cfg)

    def test_non_positive_input_size(self):
        cfg = dataclasses.replace(PALM_ANCHOR_CONFIG, input_size_width=0)
        with pytest.raises(ValueError, match="input size"):
            generate_anchors(cfg)
