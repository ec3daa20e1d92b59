from __future__ import annotations

import oss2
import pytest
from sqlmodel import Session

from storyprint import backend_pre_start, crud, initial_data
from storyprint.api.errors import AppError
from storyprint.core.config import settings
from storyprint.integrations import oss


class FakeRedis:
    def __init__(self) -> None:
        self.pings = 0

    def ping(self) -> bool:
        self.pings += 1
        return True


def test_prestart_and_seed_scripts(engine, db, monkeypatch):
    fake_redis = FakeRedis()
    # Point the scripts to the test engine so they can run without Postgres.
    monkeypatch.setattr(backend_pre_start, "engine", engine)
    monkeypatch.setattr(backend_pre_start, "get_redis", lambda: fake_redis)
    monkeypatch.setattr(initial_data, "engine", engine)

    backend_pre_start.init(engine)
    backend_pre_start.main()
    assert fake_redis.pings == 1

    with Session(engine) as session:
        assert initial_data.init(session) == len(initial_data.DEFAULT_SERVICE_OPTIONS)
        # seeding twice adds nothing
        assert initial_data.init(session) == 0
    initial_data.main()

    options = crud.print_orders.list_service_options(session=db)
    assert len(options) == len(initial_data.DEFAULT_SERVICE_OPTIONS)
    assert options[0].base_price <= options[-1].base_price


class FakeBucket:
    objects: dict[str, tuple[bytes, dict]] = {}
    fail = False

    def __init__(self, auth, endpoint, bucket_name) -> None:
        self.endpoint = endpoint
        self.bucket_name = bucket_name

    def put_object(self, key, data, headers=None):
        if FakeBucket.fail:
            raise oss2.exceptions.OssError(500, {}, b"", {"Code": "InternalError"})
        FakeBucket.objects[key] = (data, headers or {})


@pytest.fixture
def oss_settings(monkeypatch):
    monkeypatch.setattr(settings, "OSS_ENDPOINT", "oss-us-west-1.aliyuncs.com")
    monkeypatch.setattr(settings, "OSS_BUCKET", "storyprint-files")
    monkeypatch.setattr(settings, "OSS_ACCESS_KEY_ID", "id")
    monkeypatch.setattr(settings, "OSS_ACCESS_KEY_SECRET", "secret")
    monkeypatch.setattr(settings, "OSS_PUBLIC_BASE_URL", None)
    monkeypatch.setattr(oss.oss2, "Bucket", FakeBucket)
    FakeBucket.objects = {}
    FakeBucket.fail = False


def test_oss_upload_returns_public_url(oss_settings):
    storage = oss.OssStorage(prefix="/books/pdfs/", object_acl="public-read")
    url = storage.upload_bytes(name="1-interior-7.pdf", data=b"%PDF")
    assert url == "https://storyprint-files.oss-us-west-1.aliyuncs.com/books/pdfs/1-interior-7.pdf"
    data, headers = FakeBucket.objects["books/pdfs/1-interior-7.pdf"]
    assert data == b"%PDF"
    assert headers == {"Content-Type": "application/pdf", "x-oss-object-acl": "public-read"}


def test_oss_public_base_url_wins(oss_settings, monkeypatch):
    monkeypatch.setattr(settings, "OSS_PUBLIC_BASE_URL", "https://cdn.storyprint.test/")
    url = oss.OssStorage(prefix="").upload_bytes(name="cover.pdf", data=b"%PDF")
    assert url == "https://cdn.storyprint.test/cover.pdf"
    assert "x-oss-object-acl" not in FakeBucket.objects["cover.pdf"][1]


def test_oss_errors(oss_settings, monkeypatch):
    FakeBucket.fail = True
    with pytest.raises(AppError) as exc_info:
        oss.OssStorage(prefix="books").upload_bytes(name="a.pdf", data=b"x")
    assert exc_info.value.status_code == 502

    FakeBucket.fail = False
    monkeypatch.setattr(settings, "OSS_ACCESS_KEY_SECRET", None)
    with pytest.raises(AppError) as exc_info:
        oss.OssStorage(prefix="books").upload_bytes(name="a.pdf", data=b"x")
    assert exc_info.value.status_code == 500
