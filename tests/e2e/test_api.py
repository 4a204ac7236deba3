import asyncio
import re
from pathlib import Path

import pytest

PNG = b"\x89PNG\r\n\x1a\n fake image body"


def image_files(*names):
    return [("images", (name, PNG, "image/png")) for name in names]


@pytest.mark.asyncio
async def test_health_check(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_ready_reports_dependencies(client):
    response = await client.get("/ready")
    assert response.status_code == 200
    data = response.json()
    assert data["ready"] is True
    assert data["checks"] == {"broker": True, "storage": True, "reply_loop": True}


@pytest.mark.asyncio
async def test_upload_round_trip_returns_rendered_image(client, worker, settings):
    response = await client.post("/upload", files=image_files("foo.png"))

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/html")

    names = re.findall(r"<img src='/images/([^']+)' class='uploaded-image'", response.text)
    assert len(names) == 1
    assert worker.handled == ["foo.png"]
    assert (Path(settings.PROCESSED_IMAGES_DIR) / names[0]).read_bytes() == b"processed:" + PNG

    served = await client.get(f"/images/{names[0]}")
    assert served.status_code == 200
    assert served.content == b"processed:" + PNG


@pytest.mark.asyncio
async def test_upload_is_served_under_api_v1(client, worker):
    response = await client.post("/api/v1/upload", files=image_files("foo.png"))
    assert response.status_code == 200
    assert "uploaded-image" in response.text


@pytest.mark.asyncio
async def test_reply_locator_from_broker_is_returned(client, fake_broker, storage, settings, wait_until):
    await storage.put(b"bar-bytes", "bar.png")

    request = asyncio.create_task(client.post("/upload", files=image_files("foo.png")))
    await wait_until(lambda: fake_broker.jobs(settings.BROKER_JOB_TOPIC))

    job = fake_broker.jobs(settings.BROKER_JOB_TOPIC)[0]
    assert job["image_url"] == "foo.png"
    assert job["image_params"]["image"] == "foo.png"

    await fake_broker.reply(settings.BROKER_REPLY_TOPIC, "bar.png")
    response = await request

    assert response.status_code == 200
    name = re.search(r"/images/([^']+)'", response.text).group(1)
    assert (Path(settings.PROCESSED_IMAGES_DIR) / name).read_bytes() == b"bar-bytes"


@pytest.mark.asyncio
async def test_multiple_files_return_one_fragment_each(client, worker):
    response = await client.post("/upload", files=image_files("a.png", "b.png"))

    assert response.status_code == 200
    assert response.text.count("<div><img") == 2
    assert worker.handled == ["a.png", "b.png"]


@pytest.mark.asyncio
async def test_no_reply_times_out_with_408(client, app):
    response = await client.post("/upload", files=image_files("foo.png"))

    assert response.status_code == 408
    data = response.json()
    assert data["code"] == 408
    assert data["details"]["timeout_seconds"] == 0.5
    assert app.state.context.correlator.pending_count == 0


@pytest.mark.asyncio
async def test_upload_without_images_is_rejected(client):
    response = await client.post("/upload", files=[("other", ("x.png", PNG, "image/png"))])

    assert response.status_code == 400
    assert response.json()["error"] == "No files uploaded"


@pytest.mark.asyncio
async def test_non_multipart_body_is_rejected(client):
    response = await client.post("/upload", json={"images": []})

    assert response.status_code == 400
    assert "multipart" in response.json()["error"]


@pytest.mark.asyncio
async def test_too_many_files_are_rejected(client, fake_broker, settings):
    names = [f"img{i}.png" for i in range(settings.MAX_FILES + 1)]

    response = await client.post("/upload", files=image_files(*names))

    assert response.status_code == 400
    assert fake_broker.published == []


@pytest.mark.asyncio
async def test_oversized_file_is_rejected(client, fake_broker, settings):
    big = b"x" * (settings.MAX_UPLOAD_SIZE_BYTES + 1)

    response = await client.post("/upload", files=[("images", ("big.png", big, "image/png"))])

    assert response.status_code == 400
    assert response.json()["details"]["filename"] == "big.png"
    assert fake_broker.published == []


@pytest.mark.asyncio
@pytest.mark.parametrize("filename", [".", "..", "nested/.."])
async def test_reserved_filenames_are_rejected(client, fake_broker, storage, settings, filename):
    response = await client.post("/upload", files=[("images", (filename, PNG, "image/png"))])

    assert response.status_code == 400
    data = response.json()
    assert data["error"].startswith("Invalid filename")
    assert settings.LOCAL_STORAGE_PATH not in response.text
    assert fake_broker.published == []
    assert list(storage.bucket_path.iterdir()) == []


@pytest.mark.asyncio
async def test_broker_failure_returns_500(client, fake_broker, app):
    fake_broker.fail_publish = True

    response = await client.post("/upload", files=image_files("foo.png"))

    assert response.status_code == 500
    assert app.state.context.correlator.pending_count == 0


@pytest.mark.asyncio
async def test_metrics_endpoint_exposes_relay_metrics(client, worker):
    await client.post("/upload", files=image_files("foo.png"))

    response = await client.get("/api/v1/metrics")

    assert response.status_code == 200
    assert "relay_replies_total" in response.text
    assert "relay_jobs_published_total" in response.text
