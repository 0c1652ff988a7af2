"""
License tests.

The license server is replaced by an httpx.MockTransport and the device
fingerprint by a fixed string, so nothing here touches the network or the
host's hardware identifiers.
"""

import os

import httpx
import pytest

from retailpos.services.license_cache import TTLCache
from retailpos.services.license_client import LicenseApiClient
from retailpos.services.license_service import (
    LicenseDecryptError,
    LicenseService,
    encrypt_license,
    fingerprint_variations,
)

FINGERPRINT = "machine-42|pos-host|Dell|OptiPlex|SN123"
PUBLIC_KEY = "-----BEGIN PUBLIC KEY-----\nMFkw\n-----END PUBLIC KEY-----\n"


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _license_blob(fingerprint=FINGERPRINT, key_method="sha256", **data):
    payload = {"data": {"type": "full", "features": {"reports": True}, **data}, "signature": "sig"}
    return encrypt_license(payload, fingerprint, os.urandom(16), key_method)


def _service(tmp_path, handler=None, clock=None):
    calls = []

    def _record(request):
        calls.append(request)
        if handler is None:
            raise httpx.ConnectError("offline", request=request)
        return handler(request)

    client = LicenseApiClient("http://license.test/api", transport=httpx.MockTransport(_record))
    service = LicenseService(
        tmp_path,
        client,
        TTLCache(clock=clock or FakeClock()),
        fingerprint_provider=lambda: FINGERPRINT,
        ip_provider=lambda: "10.0.0.5",
    )
    return service, calls


class TestTTLCache:

    def test_entry_expires_after_ttl(self):
        clock = FakeClock()
        cache = TTLCache(clock=clock)
        cache.set("k", "v", 30)

        clock.now += 29
        assert cache.get("k") == "v"
        clock.now += 1
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_purge_expired(self):
        clock = FakeClock()
        cache = TTLCache(clock=clock)
        cache.set("short", 1, 10)
        cache.set("long", 2, 100)

        clock.now += 50

        assert cache.purge_expired() == 1
        assert cache.keys() == ["long"]

    def test_non_positive_ttl_rejected(self):
        with pytest.raises(ValueError):
            TTLCache().set("k", "v", 0)


class TestDecryption:

    def test_variations_start_with_full_fingerprint_without_duplicates(self):
        variations = fingerprint_variations(FINGERPRINT)

        assert variations[0] == FINGERPRINT
        assert variations[1] == "machine-42|pos-host"
        assert len(variations) == len(set(variations))

    def test_decrypts_with_full_fingerprint(self, tmp_path):
        service, _ = _service(tmp_path)

        result = service.decrypt_license(_license_blob(), FINGERPRINT)

        assert result["variation_used"] == 1
        assert result["key_method"] == "sha256"
        assert result["license_data"]["data"]["type"] == "full"

    def test_falls_back_to_shorter_variation_and_md5(self, tmp_path):
        service, _ = _service(tmp_path)
        blob = _license_blob(fingerprint="machine-42|pos-host", key_method="md5")

        result = service.decrypt_license(blob, FINGERPRINT)

        assert result["fingerprint"] == "machine-42|pos-host"
        assert result["variation_used"] == 2
        assert result["key_method"] == "md5"

    @pytest.mark.parametrize("blob", ["", "nocolon", "zz:zz", "00:0011"])
    def test_malformed_blob(self, tmp_path, blob):
        service, _ = _service(tmp_path)
        with pytest.raises(LicenseDecryptError):
            service.decrypt_license(blob, FINGERPRINT)

    def test_foreign_device_license_fails(self, tmp_path):
        service, _ = _service(tmp_path)
        with pytest.raises(LicenseDecryptError):
            service.decrypt_license(_license_blob(fingerprint="other-machine|x"), FINGERPRINT)


class TestOfflineFirst:

    def test_local_license_needs_no_network(self, tmp_path):
        service, calls = _service(tmp_path)
        (tmp_path / "license.json").write_text(_license_blob(), encoding="utf-8")
        (tmp_path / "public.pem").write_text(PUBLIC_KEY, encoding="utf-8")

        result = service.verify_offline_first()

        assert result["success"] is True
        assert result["source"] == "local"
        assert result["offline"] is True
        assert result["features"] == {"reports": True}
        assert calls == []

    def test_expired_local_license_reported_without_remote(self, tmp_path):
        service, calls = _service(tmp_path)
        blob = _license_blob(expires_at="2020-01-01T00:00:00Z")
        (tmp_path / "license.json").write_text(blob, encoding="utf-8")
        (tmp_path / "public.pem").write_text(PUBLIC_KEY, encoding="utf-8")

        result = service.verify_offline_first()

        assert result["success"] is False
        assert result["expired"] is True
        assert result["error_code"] == "LICENSE_EXPIRED"
        assert calls == []

    def test_missing_files_fetched_from_server(self, tmp_path):
        blob = _license_blob()

        def handler(request):
            assert request.url.path.startswith("/api/license/")
            return httpx.Response(200, json={"files": {"license.json": blob, "public.pem": PUBLIC_KEY}})

        service, calls = _service(tmp_path, handler)

        result = service.verify_offline_first()

        assert result["success"] is True
        assert (tmp_path / "license.json").read_text(encoding="utf-8") == blob
        assert len(calls) == 1

    def test_offline_without_license_needs_activation(self, tmp_path):
        service, _ = _service(tmp_path)

        result = service.verify_offline_first()

        assert result["success"] is False
        assert result["needs_first_activation"] is True
        assert result["error_code"] == "NETWORK_ERROR"

    def test_local_result_is_cached(self, tmp_path):
        clock = FakeClock()
        service, _ = _service(tmp_path, clock=clock)
        (tmp_path / "license.json").write_text(_license_blob(), encoding="utf-8")
        (tmp_path / "public.pem").write_text(PUBLIC_KEY, encoding="utf-8")
        first = service.check_local_license()

        (tmp_path / "license.json").write_text("garbage", encoding="utf-8")

        assert service.check_local_license() == first
        clock.now += 301
        assert service.check_local_license()["error_code"] == "LOCAL_LICENSE_INVALID"


class TestActivation:

    def test_first_activation_writes_files(self, tmp_path):
        blob = _license_blob()
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = request.read()
            return httpx.Response(200, json={
                "success": True,
                "license_type": "full",
                "files": {"license.json": blob, "public.pem": PUBLIC_KEY},
            })

        service, _ = _service(tmp_path, handler)

        result = service.first_activation(location={"latitude": 33.3, "longitude": 44.4})

        assert result["success"] is True
        assert result["activated"] is True
        assert seen["path"] == "/api/first-activation"
        assert b"33.3,44.4" in seen["body"]
        assert (tmp_path / "public.pem").exists()

    def test_activate_requires_code(self, tmp_path):
        service, calls = _service(tmp_path)

        result = service.activate("  ")

        assert result["error_code"] == "MISSING_CODE"
        assert calls == []

    def test_server_rejection_passes_error_code(self, tmp_path):
        def handler(request):
            return httpx.Response(400, json={"message": "Code already used", "errorCode": "CODE_USED"})

        service, _ = _service(tmp_path, handler)

        result = service.activate("ABC-123")

        assert result["success"] is False
        assert result["error_code"] == "CODE_USED"
        assert result["message"] == "Code already used"

    def test_network_failure(self, tmp_path):
        service, _ = _service(tmp_path)

        result = service.activate("ABC-123")

        assert result["error_code"] == "NETWORK_ERROR"
