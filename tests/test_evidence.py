"""Tests for local evidence storage and signed URLs."""

import time
from urllib.parse import urlparse

import pytest

from homeflow.errors import NotFoundError, ValidationError
from homeflow.evidence import MAX_PHOTO_BYTES, LocalEvidenceStore, PhotoType


@pytest.fixture
def store(tmp_path):
    return LocalEvidenceStore(tmp_path / "evidence", secret="s3cret", base_url="/evidence/")


class TestPut:
    def test_key_layout(self, store):
        key = store.put("job-1", "visit-1", PhotoType.PARTS, b"jpeg")
        assert key.startswith("job-1/visit-1/parts/")
        assert store.read(key) == b"jpeg"

    def test_keys_are_unique(self, store):
        keys = store.put_many("job-1", "job-1", "ISSUE", [b"a", b"b", b"c"])
        assert len(set(keys)) == 3
        assert [store.read(k) for k in keys] == [b"a", b"b", b"c"]

    def test_put_many_is_all_or_nothing(self, store):
        with pytest.raises(ValidationError, match="empty"):
            store.put_many("job-1", "visit-1", PhotoType.PARTS, [b"a", b""])
        assert not any(p.is_file() for p in store.root.rglob("*"))

    def test_key_uses_store_clock(self, tmp_path):
        store = LocalEvidenceStore(tmp_path, secret="s3cret", clock=lambda: 1700000000.5)
        key = store.put("job-1", "visit-1", PhotoType.SCOPE, b"jpeg")
        assert key.split("/")[-1].startswith("1700000000-")

    def test_empty_photo(self, store):
        with pytest.raises(ValidationError, match="empty"):
            store.put("job-1", "visit-1", PhotoType.SCOPE, b"")

    def test_oversized_photo(self, store):
        with pytest.raises(ValidationError, match="10 MB"):
            store.put("job-1", "visit-1", PhotoType.SCOPE, b"x" * (MAX_PHOTO_BYTES + 1))

    def test_unknown_photo_type(self, store):
        with pytest.raises(ValueError):
            store.put("job-1", "visit-1", "SELFIE", b"x")

    def test_path_traversal_rejected(self, store):
        with pytest.raises(ValidationError, match="Invalid evidence key"):
            store.read("../../etc/passwd")

    def test_missing_key(self, store):
        with pytest.raises(NotFoundError):
            store.read("job-1/visit-1/scope/none")

    def test_delete(self, store):
        key = store.put("job-1", "visit-1", PhotoType.FLAG, b"jpeg")
        assert store.delete(key) is True
        with pytest.raises(NotFoundError):
            store.read(key)
        assert store.delete(key) is False

    def test_delete_outside_root_rejected(self, store):
        with pytest.raises(ValidationError, match="Invalid evidence key"):
            store.delete("../outside")

    def test_secret_required(self, tmp_path):
        with pytest.raises(ValueError, match="secret"):
            LocalEvidenceStore(tmp_path, secret="")


class TestSignedUrls:
    """HMAC-signed, time-limited reads."""

    def test_round_trip(self, store):
        key = store.put("job-1", "visit-1", PhotoType.SCOPE, b"jpeg")
        url = store.signed_url(key)
        assert urlparse(url).path.startswith("/evidence/job-1/")
        assert store.verify_url(url) == key

    def test_expired(self, store):
        url = store.signed_url("job-1/visit-1/scope/a", expires_in=60)
        with pytest.raises(ValidationError, match="expired"):
            store.verify_url(url, now=time.time() + 120)

    def test_expiry_follows_store_clock(self, tmp_path):
        store = LocalEvidenceStore(tmp_path, secret="s3cret", clock=lambda: 1000.0)
        url = store.signed_url("job-1/visit-1/scope/a", expires_in=60)
        assert "expires=1060&" in url
        assert store.verify_url(url) == "job-1/visit-1/scope/a"
        with pytest.raises(ValidationError, match="expired"):
            store.verify_url(url, now=1061)

    def test_tampered_key(self, store):
        url = store.signed_url("job-1/visit-1/scope/a")
        with pytest.raises(ValidationError, match="signature"):
            store.verify_url(url.replace("job-1", "job-2"))

    def test_tampered_expiry(self, store):
        url = store.signed_url("job-1/visit-1/scope/a", expires_in=60)
        parsed = urlparse(url)
        expires = int(parsed.query.split("&")[0].split("=")[1])
        forged = url.replace(f"expires={expires}", f"expires={expires + 3600}")
        with pytest.raises(ValidationError, match="signature"):
            store.verify_url(forged)

    def test_other_secret_rejected(self, store, tmp_path):
        other = LocalEvidenceStore(tmp_path / "other", secret="different", base_url="/evidence")
        with pytest.raises(ValidationError, match="signature"):
            store.verify_url(other.signed_url("job-1/visit-1/scope/a"))

    @pytest.mark.parametrize(
        "url",
        ["/evidence/job-1/a", "/evidence/job-1/a?expires=soon&signature=x", "/elsewhere/a?expires=1&signature=x"],
    )
    def test_malformed(self, store, url):
        with pytest.raises(ValidationError, match="Malformed"):
            store.verify_url(url)
