import io

import numpy as np
from PIL import Image


def make_png_bytes(w=64, h=48, color=(128, 64, 32)) -> bytes:
    arr = np.zeros((h, w, 3), dtype=np.uint8)
    arr[:, :] = color
    img = Image.fromarray(arr)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def _upload(client, headers, w=64, h=48):
    files = {"file": ("sample.png", make_png_bytes(w, h), "image/png")}
    r = client.post("/images", headers=headers, files=files)
    assert r.status_code == 201, r.text
    return r.json()


def test_root_and_health(client):
    assert client.get("/").json()["status"] == "ok"
    assert client.get("/health").json() == {"status": "healthy"}


def test_requires_bearer_token(client):
    assert client.get("/images").status_code == 401
    r = client.get("/images", headers={"Authorization": "Basic abc"})
    assert r.status_code == 401


def test_upload_list_and_download(client, auth_header):
    image = _upload(client, auth_header)
    assert image["original"]["width"] == 64
    assert image["original"]["format"] == "png"
    assert image["variants"] == []

    listing = client.get("/images", headers=auth_header).json()
    assert [item["id"] for item in listing["items"]] == [image["id"]]
    assert listing["pagination"] == {"page": 1, "limit": 10, "total": 1, "total_pages": 1}

    r = client.get(f"/images/{image['id']}", headers=auth_header)
    assert r.status_code == 200
    assert r.headers["content-type"] == "image/png"
    assert r.headers["content-disposition"] == f'inline; filename="{image["id"]}.png"'
    assert Image.open(io.BytesIO(r.content)).size == (64, 48)


def test_upload_rejects_text(client, auth_header):
    files = {"file": ("notes.txt", b"hello", "text/plain")}
    r = client.post("/images", headers=auth_header, files=files)
    assert r.status_code == 400


def test_save_transform_is_idempotent(client, auth_header, fresh_rate_limiter):
    image = _upload(client, auth_header)
    body = {"transformations": {"resize": {"width": 32, "height": 24}, "format": "webp"}}

    first = client.post(f"/images/{image['id']}/transform/save", headers=auth_header, json=body)
    assert first.status_code == 200, first.text
    second = client.post(
        f"/images/{image['id']}/transform/save",
        headers=auth_header,
        json={"transformations": {"format": "webp", "resize": {"height": 24, "width": 32}}},
    )
    assert first.json()["cached"] is False
    assert second.json()["cached"] is True
    variant = first.json()["variant"]
    assert second.json()["variant"]["hash"] == variant["hash"]
    assert (variant["width"], variant["height"]) == (32, 24)
    assert variant["content_type"] == "image/webp"

    r = client.get(variant["url"], headers=auth_header)
    assert r.status_code == 200
    assert r.headers["content-type"] == "image/webp"

    listed = client.get("/images", headers=auth_header).json()["items"][0]
    assert [v["hash"] for v in listed["variants"]] == [variant["hash"]]


def test_preview_returns_bytes(client, auth_header, fresh_rate_limiter):
    image = _upload(client, auth_header)
    body = {"transformations": {"rotate": 90, "format": "png"}}
    r = client.post(f"/images/{image['id']}/transform", headers=auth_header, json=body)
    assert r.status_code == 200, r.text
    assert r.headers["content-type"] == "image/png"
    assert Image.open(io.BytesIO(r.content)).size == (48, 64)
    # previews are not stored
    meta = client.get("/images", headers=auth_header).json()["items"][0]
    assert meta["variants"] == []


def test_invalid_transformations(client, auth_header, fresh_rate_limiter):
    image = _upload(client, auth_header)
    url = f"/images/{image['id']}/transform/save"

    r = client.post(url, headers=auth_header, json={"transformations": {}})
    assert r.status_code == 400
    assert r.json()["detail"]["field"] == "transformations"

    r = client.post(url, headers=auth_header, json={"transformations": {"compress": {"quality": 101}}})
    assert r.status_code == 400
    assert r.json()["detail"]["field"] == "compress.quality"

    r = client.post(
        url,
        headers=auth_header,
        json={"transformations": {"crop": {"x": 60, "y": 40, "width": 30, "height": 30}}},
    )
    assert r.status_code == 422


def test_transform_rate_limit(client, auth_header, fresh_rate_limiter):
    image = _upload(client, auth_header)
    url = f"/images/{image['id']}/transform"
    statuses = [
        client.post(url, headers=auth_header, json={"transformations": {"rotate": i}}).status_code
        for i in range(21)
    ]
    assert statuses[:20] == [200] * 20
    assert statuses[20] == 429
    r = client.post(url, headers=auth_header, json={"transformations": {"rotate": 99}})
    assert r.status_code == 429
    assert float(r.headers["retry-after"]) > 0


def test_retrieve_with_format_conversion(client, auth_header):
    image = _upload(client, auth_header)
    r = client.get(f"/images/{image['id']}?format=jpeg", headers=auth_header)
    assert r.status_code == 200
    assert r.headers["content-type"] == "image/jpeg"
    assert client.get(f"/images/{image['id']}?format=gif", headers=auth_header).status_code == 400
    missing = client.get(f"/images/{image['id']}?variant={'0' * 24}", headers=auth_header)
    assert missing.status_code == 404


def test_other_users_cannot_see_image(client, auth_header, other_auth_header):
    image = _upload(client, auth_header)
    assert client.get(f"/images/{image['id']}", headers=other_auth_header).status_code == 404
    assert client.delete(f"/images/{image['id']}", headers=other_auth_header).status_code == 404
    assert client.get("/images", headers=other_auth_header).json()["items"] == []


def test_delete_cascades(client, auth_header, fresh_rate_limiter):
    image = _upload(client, auth_header)
    body = {"transformations": {"flip": True}}
    client.post(f"/images/{image['id']}/transform/save", headers=auth_header, json=body)

    r = client.delete(f"/images/{image['id']}", headers=auth_header)
    assert r.status_code == 200
    assert r.json() == {"id": image["id"], "deleted": True, "removed_keys": 2}
    assert client.get(f"/images/{image['id']}", headers=auth_header).status_code == 404


def test_direct_upload(client, auth_header):
    r = client.post(
        "/images/upload-url",
        headers=auth_header,
        json={"file_name": "direct.png", "content_type": "image/png"},
    )
    assert r.status_code == 200, r.text
    ticket = r.json()
    assert ticket["method"] == "PUT"

    put = client.put(
        ticket["upload_url"],
        headers={**auth_header, "Content-Type": "image/png"},
        content=make_png_bytes(20, 10),
    )
    assert put.status_code == 204

    r = client.post(
        "/images/finalize-upload",
        headers=auth_header,
        json={"key": ticket["key"], "file_name": "direct.png"},
    )
    assert r.status_code == 201, r.text
    assert r.json()["original"]["key"] == ticket["key"]
    assert r.json()["original"]["width"] == 20


def test_direct_upload_other_users_key(client, auth_header, other_auth_header):
    ticket = client.post(
        "/images/upload-url",
        headers=auth_header,
        json={"file_name": "mine.png", "content_type": "image/png"},
    ).json()
    put = client.put(ticket["upload_url"], headers=other_auth_header, content=make_png_bytes())
    assert put.status_code == 403
    r = client.post(
        "/images/finalize-upload",
        headers=other_auth_header,
        json={"key": ticket["key"], "file_name": "mine.png"},
    )
    assert r.status_code == 400
