"""Tests for the dlkit-predict command."""

import numpy as np
import pytest
import tensorflow as tf

from dlkit.cli.predict import build_parser, main
from dlkit.core.layers import Conv2D, Dense, Flatten, Input, MaxPool2D
from dlkit.core.model import Sequential


@pytest.fixture
def image_model_dir(tmp_path):
    model = Sequential.of(
        Input(8, 8, 1),
        Conv2D(4, kernel_size=3, padding='same', activation='relu', name='conv'),
        MaxPool2D(pool_size=2, strides=2, name='pool'),
        Flatten(name='flatten'),
        Dense(3, name='logits'),
    )
    with model:
        model.compile(optimizer='sgd')
        directory = str(tmp_path / 'model')
        model.save(directory)
    return directory


@pytest.fixture
def png_files(tmp_path):
    rng = np.random.default_rng(5)
    paths = []
    for i, size in enumerate([(8, 8), (16, 12)]):
        image = rng.integers(0, 256, size=size + (1,), dtype=np.uint8)
        path = tmp_path / f'digit_{i}.png'
        path.write_bytes(tf.io.encode_png(image).numpy())
        paths.append(str(path))
    return paths


class TestParser:

    def test_defaults(self):
        args = build_parser().parse_args(['model', 'a.png'])
        assert args.scale == 255.0
        assert not args.softly

    def test_requires_images(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(['model'])


class TestMain:

    def test_prints_class_per_image(self, image_model_dir, png_files, capsys):
        assert main([image_model_dir] + png_files) == 0
        lines = capsys.readouterr().out.splitlines()
        assert len(lines) == 2
        for path, line in zip(png_files, lines):
            name, label = line.rsplit(': ', 1)
            assert name == path
            assert int(label) in (0, 1, 2)

    def test_softly_prints_vectors(self, image_model_dir, png_files, capsys):
        assert main([image_model_dir, png_files[0], '--softly']) == 0
        assert capsys.readouterr().out.startswith(f'{png_files[0]}: [')

    def test_missing_image(self, image_model_dir, tmp_path, capsys):
        assert main([image_model_dir, str(tmp_path / 'nope.png')]) == 1
        assert 'Error' in capsys.readouterr().err

    def test_missing_model(self, tmp_path, png_files, capsys):
        assert main([str(tmp_path / 'absent'), png_files[0]]) == 1
        assert 'model_config.json' in capsys.readouterr().err

    def test_rejects_non_image_models(self, compiled_model, tmp_path, png_files, capsys):
        directory = str(tmp_path / 'dense')
        compiled_model.save(directory)
        assert main([directory, png_files[0]]) == 1
        assert 'not an image shape' in capsys.readouterr().err
