"""Pytest fixtures: test client, in-memory DB, in-memory S3 double, tokens, sample images."""
import io
import os
import random
import uuid

import pytest
from botocore.exceptions import ClientError
from botocore.response import StreamingBody
from fastapi.testclient import TestClient
from PIL import Image

# Must be set before app is imported: settings and engine are built at import time
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("INFERENCE_PROVIDER", "mock")
os.environ.setdefault("RATE_LIMIT_PER_MINUTE", "20")
os.environ.setdefault("S3_BUCKET_NAME", "test-bucket")
os.environ.setdefault("S3_ACCESS_KEY_ID", "test")
os.environ.setdefault("S3_SECRET_ACCESS_KEY", "test")

from sqlmodel import Session, SQLModel

from app.api.deps import get_object_store
from app.core.database import engine
from app.core.rate_limit import limiter
from app.core.security import create_access_token
from app.main import app
from app.services.storage import ObjectStore


class FakeS3Client:
    """Dict-backed stand-in for a boto3 S3 client. Missing keys raise the same ClientError codes S3 does."""

    def __init__(self):
        self.objects: dict[str, dict] = {}
        self.fail_on: set[str] = set()
        self.calls: list[tuple[str, str]] = []

    def _maybe_fail(self, operation: str, key: str) -> None:
        self.calls.append((operation, key))
        if operation in self.fail_on:
            raise ClientError({"Error": {"Code": "InternalError", "Message": "injected failure"}}, operation)

    def put_object(self, Bucket, Key, Body, ContentType=None, Metadata=None):
        self._maybe_fail("PutObject", Key)
        self.objects[Key] = {"body": bytes(Body), "content_type": ContentType, "metadata": Metadata or {}}
        return {"ETag": uuid.uuid4().hex}

    def get_object(self, Bucket, Key):
        self._maybe_fail("GetObject", Key)
        if Key not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "not found"}}, "GetObject")
        obj = self.objects[Key]
        return {
            "Body": StreamingBody(io.BytesIO(obj["body"]), len(obj["body"])),
            "ContentType": obj["content_type"],
            "ContentLength": len(obj["body"]),
        }

    def head_object(self, Bucket, Key):
        self._maybe_fail("HeadObject", Key)
        if Key not in self.objects:
            raise ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, "HeadObject")
        return {"ContentLength": len(self.objects[Key]["body"])}

    def copy_object(self, Bucket, CopySource, Key):
        self._maybe_fail("CopyObject", Key)
        source = CopySource["Key"]
        if source not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "not found"}}, "CopyObject")
        self.objects[Key] = dict(self.objects[source])
        return {}

    def delete_object(self, Bucket, Key):
        self._maybe_fail("DeleteObject", Key)
        self.objects.pop(Key, None)
        return {}

    def temp_keys(self) -> list[str]:
        return sorted(k for k in self.objects if k.startswith("temp/"))


def make_jpeg(width: int = 64, height: int = 48, color=(200, 120, 40), quality: int = 90) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="JPEG", quality=quality)
    return buf.getvalue()


def make_noise_jpeg(width: int, height: int, quality: int = 95, seed: int = 1) -> bytes:
    """Random pixels compress badly, so a few hundred KB is easy to reach."""
    pixels = random.Random(seed).randbytes(width * height * 3)
    image = Image.frombytes("RGB", (width, height), pixels)
    buf = io.BytesIO()
    image.save(buf, format="JPEG", quality=quality)
    return buf.getvalue()


@pytest.fixture(autouse=True)
def _fresh_tables():
    """The in-memory DB is shared by the whole session; every test starts with empty tables."""
    SQLModel.metadata.create_all(engine)
    yield
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def fake_s3() -> FakeS3Client:
    return FakeS3Client()


@pytest.fixture
def object_store(fake_s3) -> ObjectStore:
    return ObjectStore(fake_s3, "test-bucket")


@pytest.fixture
def db_session():
    with Session(engine) as session:
        yield session


@pytest.fixture(scope="function")
def client(object_store):
    """TestClient with lifespan; object store calls go to the in-memory double."""
    app.dependency_overrides[get_object_store] = lambda: object_store
    limiter.reset()
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def user_id() -> str:
    return f"user-{uuid.uuid4().hex[:8]}"


@pytest.fixture
def auth_headers(user_id):
    token = create_access_token({"sub": user_id})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def food_jpeg() -> bytes:
    return make_jpeg()


@pytest.fixture
def jpeg_factory():
    return make_jpeg


@pytest.fixture
def noise_jpeg_factory():
    return make_noise_jpeg
