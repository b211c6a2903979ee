"""Unit tests for Dataset."""

import numpy as np
import pytest

from dlkit.dataset import Dataset, one_hot


class TestOneHot:

    def test_encodes_labels(self):
        encoded = one_hot(np.array([0, 2, 1]), 3)
        np.testing.assert_array_equal(encoded, [[1, 0, 0], [0, 0, 1], [0, 1, 0]])
        assert encoded.dtype == np.float32

    def test_infers_class_count(self):
        assert one_hot([0, 4]).shape == (2, 5)

    def test_rejects_out_of_range(self):
        with pytest.raises(ValueError):
            one_hot([0, 3], 3)
        with pytest.raises(ValueError):
            one_hot([-1], 3)


class TestDataset:

    @pytest.fixture
    def dataset(self):
        x = np.arange(20, dtype=np.float32).reshape(10, 2)
        return Dataset.create(x, np.arange(10) % 3, num_classes=3)

    def test_create(self, dataset):
        assert len(dataset) == 10
        assert dataset.num_classes == 3
        np.testing.assert_array_equal(dataset.labels(), np.arange(10) % 3)

    def test_length_mismatch(self):
        with pytest.raises(ValueError, match="differ in length"):
            Dataset(np.zeros((3, 2)), np.zeros((4, 1)))

    def test_regression_targets_become_columns(self):
        assert Dataset(np.zeros((3, 2)), np.zeros(3)).y.shape == (3, 1)

    def test_split_keeps_order(self, dataset):
        first, second = dataset.split(0.8)
        assert len(first) == 8 and len(second) == 2
        np.testing.assert_array_equal(second.x, dataset.x[8:])

    def test_split_ratio_bounds(self, dataset):
        with pytest.raises(ValueError):
            dataset.split(1.0)

    def test_shuffle_is_a_permutation(self, dataset):
        shuffled = dataset.shuffle(seed=1)
        assert sorted(shuffled.x[:, 0]) == sorted(dataset.x[:, 0])
        # pairs stay aligned
        for row, target in zip(shuffled.x, shuffled.y):
            index = int(row[0]) // 2
            np.testing.assert_array_equal(target, dataset.y[index])

    def test_batches(self, dataset):
        sizes = [len(bx) for bx, _ in dataset.batches(4)]
        assert sizes == [4, 4, 2]
        assert dataset.num_batches(4) == 3

    def test_invalid_batch_size(self, dataset):
        with pytest.raises(ValueError):
            list(dataset.batches(0))
