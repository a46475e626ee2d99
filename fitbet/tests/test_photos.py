import pytest

from fitbet.core.errors import NotFoundError, ValidationError
from fitbet.features.photos.store import LocalPhotoStore


def test_save_and_load_start_photo(tmp_path):
    store = LocalPhotoStore(tmp_path)

    reference = store.save(b"jpeg-bytes", 7, "front")

    assert reference == "7/start/front.jpg"
    assert store.load(reference) == b"jpeg-bytes"
    assert (tmp_path / "7" / "start" / "front.jpg").is_file()


def test_checkin_photos_go_to_numbered_stage(tmp_path):
    store = LocalPhotoStore(tmp_path)
    assert store.save(b"x", 7, "back", stage=2) == "7/checkin-2/back.jpg"


def test_invalid_input_is_rejected(tmp_path):
    store = LocalPhotoStore(tmp_path)
    with pytest.raises(ValidationError):
        store.save(b"x", 7, "top")
    with pytest.raises(ValidationError):
        store.save(b"", 7, "front")
    with pytest.raises(ValidationError):
        store.load("../outside.jpg")


def test_missing_photo(tmp_path):
    with pytest.raises(NotFoundError):
        LocalPhotoStore(tmp_path).load("1/start/front.jpg")


def test_health_probe(tmp_path):
    health = LocalPhotoStore(tmp_path / "photos").health()
    assert health["status"] == "ok"
    assert (tmp_path / "photos").is_dir()
