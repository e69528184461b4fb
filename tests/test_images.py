"""Image resizing and the tour image upload route."""

from __future__ import annotations

import io
import os
from typing import Any, Callable, Dict, List

import pytest
from bson import ObjectId
from flask import Flask
from PIL import Image
from werkzeug.datastructures import FileStorage

from backend.tourbook.errors import ValidationError
from backend.tourbook.services import images


def _image_bytes(size=(1200, 900), mode: str = "RGB", fmt: str = "PNG") -> bytes:
    buf = io.BytesIO()
    color = (10, 120, 200, 128) if mode == "RGBA" else (10, 120, 200)
    Image.new(mode, size, color).save(buf, format=fmt)
    return buf.getvalue()


def test_to_jpeg_crops_to_target_size() -> None:
    data = images.to_jpeg(_image_bytes((1200, 300)), images.USER_PHOTO_SIZE)
    with Image.open(io.BytesIO(data)) as img:
        assert img.format == "JPEG"
        assert img.size == (500, 500)
        assert img.mode == "RGB"


def test_to_jpeg_flattens_transparency() -> None:
    data = images.to_jpeg(_image_bytes((600, 600), mode="RGBA"), images.USER_PHOTO_SIZE)
    with Image.open(io.BytesIO(data)) as img:
        assert img.mode == "RGB"


def test_to_jpeg_rejects_garbage() -> None:
    with pytest.raises(ValidationError, match="Not an image!"):
        images.to_jpeg(b"definitely not pixels", images.USER_PHOTO_SIZE)


def test_tour_images_upload(
    app: Flask, client, make_tour: Callable[..., Dict[str, Any]], make_user: Callable[..., Dict[str, Any]], auth_header
) -> None:
    tour = make_tour()
    resp = client.patch(
        f"/api/v1/tours/{tour['_id']}",
        data={
            "price": "450",
            "imageCover": (io.BytesIO(_image_bytes()), "cover.png", "image/png"),
            "images": [
                (io.BytesIO(_image_bytes()), "one.png", "image/png"),
                (io.BytesIO(_image_bytes()), "two.png", "image/png"),
                (io.BytesIO(_image_bytes()), "three.png", "image/png"),
            ],
        },
        content_type="multipart/form-data",
        headers=auth_header(make_user(role="admin")),
    )
    assert resp.status_code == 200
    data = resp.get_json()["data"]["data"]
    assert data["price"] == 450
    assert data["imageCover"].endswith("-cover.jpeg")
    assert [name.rsplit("-", 1)[1] for name in data["images"]] == ["1.jpeg", "2.jpeg", "3.jpeg"]

    cover_path = os.path.join(app.config["IMAGE_ROOT"], "tours", data["imageCover"])
    with Image.open(cover_path) as img:
        assert img.size == (2000, 1333)


def test_tour_images_need_cover_and_gallery(
    client, make_tour: Callable[..., Dict[str, Any]], make_user: Callable[..., Dict[str, Any]], auth_header
) -> None:
    tour = make_tour()
    resp = client.patch(
        f"/api/v1/tours/{tour['_id']}",
        data={"imageCover": (io.BytesIO(_image_bytes()), "cover.png", "image/png")},
        content_type="multipart/form-data",
        headers=auth_header(make_user(role="admin")),
    )
    assert resp.status_code == 200
    assert resp.get_json()["data"]["data"]["imageCover"] == "tour-1-cover.jpg"


def test_tour_images_limit(app: Flask) -> None:
    def upload(name: str) -> FileStorage:
        return FileStorage(io.BytesIO(_image_bytes((50, 50))), filename=name, content_type="image/png")

    with app.app_context():
        with pytest.raises(ValidationError, match="at most 3"):
            images.resize_tour_images("abc", upload("c.png"), [upload(f"{i}.png") for i in range(4)])


def _stored_files(app: Flask, subdir: str) -> List[str]:
    directory = os.path.join(app.config["IMAGE_ROOT"], subdir)
    return os.listdir(directory) if os.path.isdir(directory) else []


def _gallery_upload(**fields: Any) -> Dict[str, Any]:
    return {
        **fields,
        "imageCover": (io.BytesIO(_image_bytes((300, 200))), "cover.png", "image/png"),
        "images": [(io.BytesIO(_image_bytes((300, 200))), f"{i}.png", "image/png") for i in range(2)],
    }


def test_tour_images_not_kept_for_unknown_tour(
    app: Flask, client, make_user: Callable[..., Dict[str, Any]], auth_header
) -> None:
    resp = client.patch(
        f"/api/v1/tours/{ObjectId()}",
        data=_gallery_upload(),
        content_type="multipart/form-data",
        headers=auth_header(make_user(role="admin")),
    )
    assert resp.status_code == 404
    assert _stored_files(app, "tours") == []


def test_tour_images_not_kept_when_update_is_invalid(
    app: Flask, client, make_tour: Callable[..., Dict[str, Any]], make_user: Callable[..., Dict[str, Any]], auth_header
) -> None:
    tour = make_tour()
    resp = client.patch(
        f"/api/v1/tours/{tour['_id']}",
        data=_gallery_upload(difficulty="extreme"),
        content_type="multipart/form-data",
        headers=auth_header(make_user(role="admin")),
    )
    assert resp.status_code == 400
    assert _stored_files(app, "tours") == []


def test_user_photo_not_kept_when_email_is_taken(
    app: Flask, client, make_user: Callable[..., Dict[str, Any]], auth_header
) -> None:
    make_user(email="taken@example.com")
    user = make_user(email="kim@example.com")
    resp = client.patch(
        "/api/v1/users/updateMe",
        data={
            "email": "taken@example.com",
            "photo": (io.BytesIO(_image_bytes((600, 600))), "me.png", "image/png"),
        },
        content_type="multipart/form-data",
        headers=auth_header(user),
    )
    assert resp.status_code == 409
    assert _stored_files(app, "users") == []
