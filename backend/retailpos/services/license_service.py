# Overview: Device fingerprinting, local license decryption and remote activation.

"""
License Service

A license is an AES-256-CBC blob stored as "ivHex:cipherHex" in
LICENSE_DIR/license.json, next to the server's public.pem. The key is
derived from the device fingerprint
("machineId|hostname|manufacturer|model|serial").

Fingerprint formats changed over time, so decryption tries a fixed list of
fingerprint variations, each with two key schemes (SHA-256 of the string,
and its MD5 digest repeated to 32 bytes). The first pair that decrypts to a
JSON object with a "data" object wins.

Results are cached in a TTLCache: fingerprint 5 minutes, decryption
2 minutes, local check 5 minutes, errors 30 seconds.

Check order (offline first): local files, then GET /license/{fingerprint}
which writes fresh files, then report needs_first_activation.
"""

from __future__ import annotations

import hashlib
import json
import logging
import platform
import socket
import subprocess
from pathlib import Path
from typing import Callable, Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from ..time_utils import parse_iso_datetime, utcnow
from .license_cache import TTLCache
from .license_client import LicenseApiClient, LicenseApiError

logger = logging.getLogger(__name__)

LICENSE_FILE = "license.json"
PUBLIC_KEY_FILE = "public.pem"
DEFAULT_LOCATION = "Iraq"

FINGERPRINT_TTL = 300
DECRYPT_TTL = 120
LOCAL_TTL = 300
ERROR_TTL = 30


class LicenseDecryptError(Exception):
    """No (fingerprint variation, key scheme) pair could decrypt the blob."""


# =============================================================================
# FINGERPRINT
# =============================================================================

def _read_first(paths: list[str]) -> str | None:
    for p in paths:
        try:
            value = Path(p).read_text(encoding="utf-8").strip()
        except OSError:
            continue
        if value:
            return value
    return None


def _machine_id() -> str:
    system = platform.system()
    if system == "Linux":
        value = _read_first(["/etc/machine-id", "/var/lib/dbus/machine-id"])
        if value:
            return value
    elif system == "Windows":
        try:
            import winreg

            with winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, r"SOFTWARE\Microsoft\Cryptography") as key:
                return str(winreg.QueryValueEx(key, "MachineGuid")[0])
        except OSError:
            pass
    elif system == "Darwin":
        try:
            out = subprocess.run(
                ["ioreg", "-rd1", "-c", "IOPlatformExpertDevice"],
                capture_output=True, text=True, timeout=5, check=False,
            ).stdout
            for line in out.splitlines():
                if "IOPlatformUUID" in line:
                    return line.split("=", 1)[1].strip().strip('"')
        except (OSError, subprocess.SubprocessError):
            pass
    return hashlib.sha256(socket.gethostname().encode("utf-8")).hexdigest()


def _hardware_info() -> dict[str, str]:
    info = {"manufacturer": "unknown", "model": "unknown", "serial": "unknown"}
    if platform.system() == "Linux":
        base = "/sys/class/dmi/id/"
        for field, name in (("manufacturer", "sys_vendor"), ("model", "product_name"), ("serial", "product_serial")):
            info[field] = _read_first([base + name]) or "unknown"
    return info


def collect_fingerprint() -> str:
    hw = _hardware_info()
    return "|".join([_machine_id(), socket.gethostname(), hw["manufacturer"], hw["model"], hw["serial"]])


def local_ip_address() -> str:
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("8.8.8.8", 80))
            return s.getsockname()[0]
    except OSError:
        return "IP not found"


def fingerprint_variations(fingerprint: str) -> list[str]:
    """Candidate fingerprints in priority order, duplicates removed."""
    parts = fingerprint.split("|")

    def part(i: int) -> str:
        return parts[i] if i < len(parts) else "undefined"

    candidates = [
        fingerprint,
        "|".join(parts[:2]),
        parts[0],
        "|".join(parts[:3]),
        "|".join(parts[:4]),
        f"{part(0)}|{part(2)}",
        f"{part(0)}|{part(3)}",
        f"{part(0)}|{part(4)}",
        fingerprint.replace("|unknown|unknown|unknown", "", 1),
        fingerprint.replace("|unknown|unknown", "", 1),
        fingerprint.replace("|unknown", "", 1),
    ]
    seen: set[str] = set()
    ordered = []
    for c in candidates:
        if c not in seen:
            seen.add(c)
            ordered.append(c)
    return ordered


def derive_keys(fingerprint: str) -> list[tuple[str, bytes]]:
    md5 = hashlib.md5(fingerprint.encode("utf-8")).digest()
    return [
        ("sha256", hashlib.sha256(fingerprint.encode("utf-8")).digest()),
        ("md5", md5 + md5),
    ]


def _aes_decrypt(key: bytes, iv: bytes, ciphertext: bytes) -> bytes:
    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(ciphertext) + decryptor.finalize()
    unpadder = padding.PKCS7(128).unpadder()
    return unpadder.update(padded) + unpadder.finalize()


def encrypt_license(payload: dict, fingerprint: str, iv: bytes, key_method: str = "sha256") -> str:
    """Produce an "ivHex:cipherHex" blob for payload (used by tooling and tests)."""
    key = dict(derive_keys(fingerprint))[key_method]
    padder = padding.PKCS7(128).padder()
    data = padder.update(json.dumps(payload).encode("utf-8")) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    return f"{iv.hex()}:{(encryptor.update(data) + encryptor.finalize()).hex()}"


# =============================================================================
# SERVICE
# =============================================================================

class LicenseService:
    def __init__(
        self,
        license_dir: str | Path,
        client: LicenseApiClient,
        cache: TTLCache,
        fingerprint_provider: Callable[[], str] = collect_fingerprint,
        ip_provider: Callable[[], str] = local_ip_address,
    ):
        self.license_dir = Path(license_dir)
        self.client = client
        self.cache = cache
        self._fingerprint_provider = fingerprint_provider
        self._ip_provider = ip_provider

    @property
    def license_path(self) -> Path:
        return self.license_dir / LICENSE_FILE

    @property
    def public_key_path(self) -> Path:
        return self.license_dir / PUBLIC_KEY_FILE

    def generate_fingerprint(self) -> str:
        cached = self.cache.get("license:fingerprint:device")
        if cached:
            return cached
        fingerprint = self._fingerprint_provider()
        self.cache.set("license:fingerprint:device", fingerprint, FINGERPRINT_TTL)
        return fingerprint

    def clear_cache(self) -> None:
        self.cache.clear()
        logger.info("License cache cleared")

    # -------------------------------------------------------------------------
    # decryption
    # -------------------------------------------------------------------------

    def decrypt_license(self, blob: str, fingerprint: str) -> dict:
        """
        Decrypt a license blob against the fingerprint and its variations.

        Returns {license_data, iv, fingerprint, variation_used, key_method}.
        Raises LicenseDecryptError when the blob is malformed or no
        variation/key pair produces a valid license structure.
        """
        if not blob:
            raise LicenseDecryptError("License is empty")
        blob = blob.strip()
        cache_key = f"license:decrypt:{fingerprint}:{blob[:50]}"
        cached = self.cache.get(cache_key)
        if cached:
            return cached

        parts = blob.split(":")
        if len(parts) != 2:
            raise LicenseDecryptError("Invalid license format")
        try:
            iv = bytes.fromhex(parts[0])
            ciphertext = bytes.fromhex(parts[1])
        except ValueError:
            raise LicenseDecryptError("Invalid license format")
        if len(iv) != 16 or not ciphertext or len(ciphertext) % 16:
            raise LicenseDecryptError("Invalid license format")

        for index, variation in enumerate(fingerprint_variations(fingerprint), start=1):
            for method, key in derive_keys(variation):
                try:
                    license_data = json.loads(_aes_decrypt(key, iv, ciphertext).decode("utf-8"))
                except (ValueError, UnicodeDecodeError):
                    continue
                if not isinstance(license_data, dict) or not isinstance(license_data.get("data"), dict):
                    continue
                result = {
                    "license_data": license_data,
                    "iv": parts[0],
                    "fingerprint": variation,
                    "variation_used": index,
                    "key_method": method,
                }
                self.cache.set(cache_key, result, DECRYPT_TTL)
                if index > 1 or method != "sha256":
                    logger.info("License decrypted with variation %s (%s)", index, method)
                return result

        raise LicenseDecryptError("All decryption attempts failed - no matching fingerprint found")

    def _license_result(self, decrypted: dict, fingerprint: str, message: str) -> dict:
        info = decrypted["license_data"]["data"]
        expires_at = info.get("expires_at")
        if expires_at:
            expiry = parse_iso_datetime(expires_at)
            if expiry is not None and utcnow() > expiry:
                return {
                    "success": False,
                    "expired": True,
                    "device_id": fingerprint,
                    "license_type": info.get("type"),
                    "expires_at": expires_at,
                    "message": "Local license has expired",
                    "error_code": "LICENSE_EXPIRED",
                }
        return {
            "success": True,
            "device_id": fingerprint,
            "license_type": info.get("type"),
            "features": info.get("features") or {},
            "activated_at": info.get("activated_at"),
            "expires_at": expires_at,
            "user_id": info.get("userId"),
            "feature_licenses": info.get("feature_licenses"),
            "feature_expiration_status": info.get("feature_expiration_status"),
            "signature": decrypted["license_data"].get("signature"),
            "message": message,
        }

    # -------------------------------------------------------------------------
    # files / remote
    # -------------------------------------------------------------------------

    def _write_files(self, license_blob: str, public_key: str) -> None:
        self.license_dir.mkdir(parents=True, exist_ok=True)
        self.public_key_path.write_text(public_key, encoding="utf-8")
        self.license_path.write_text(license_blob, encoding="utf-8")

    def fetch_remote_license(self, fingerprint: str | None = None) -> dict:
        """GET /license/{fingerprint}; persists the returned files and decrypts them."""
        fingerprint = fingerprint or self.generate_fingerprint()
        try:
            response = self.client.get_license(fingerprint)
        except LicenseApiError as exc:
            return {
                "success": False,
                "message": "Cannot reach the activation server. Check the internet connection",
                "error": str(exc),
                "error_code": "NETWORK_ERROR",
                "network_error": True,
            }

        files = response.get("files") or {}
        if not files.get(LICENSE_FILE):
            return {
                "success": False,
                "message": response.get("message") or response.get("error") or "No license found for this device",
                "details": response,
                "error_code": response.get("errorCode") or "MISSING_FILES",
            }
        public_key = files.get(PUBLIC_KEY_FILE)
        if not isinstance(public_key, str) or not public_key.strip():
            return {
                "success": False,
                "message": "Invalid license response from server - missing public key",
                "error_code": "MISSING_PUBLIC_KEY",
            }

        self._write_files(files[LICENSE_FILE], public_key)
        try:
            decrypted = self.decrypt_license(files[LICENSE_FILE], fingerprint)
        except LicenseDecryptError as exc:
            return {"success": False, "message": str(exc), "error_code": "DECRYPT_FAILED"}

        result = self._license_result(decrypted, fingerprint, "License fetched from server")
        if result.get("license_type") is None:
            result["license_type"] = response.get("license_type")
        if result.get("user_id") is None:
            result["user_id"] = response.get("userId")
        return result

    # -------------------------------------------------------------------------
    # checks
    # -------------------------------------------------------------------------

    def check_local_license(self, fingerprint: str | None = None) -> dict:
        """
        Validate the license on disk. Missing files trigger one remote fetch.

        Successes and expiries are cached 5 minutes, errors 30 seconds.
        """
        fingerprint = fingerprint or self.generate_fingerprint()
        cache_key = f"license:local:{fingerprint}"
        cached = self.cache.get(cache_key)
        if cached:
            return cached

        if not self.license_path.exists() or not self.public_key_path.exists():
            result = self.fetch_remote_license(fingerprint)
            if result.get("success"):
                result["message"] = "License verified locally (fetched from server)"
            ttl = LOCAL_TTL if (result.get("success") or result.get("expired")) else ERROR_TTL
            self.cache.set(cache_key, result, ttl)
            return result

        try:
            blob = self.license_path.read_text(encoding="utf-8")
            decrypted = self.decrypt_license(blob, fingerprint)
        except (OSError, LicenseDecryptError) as exc:
            logger.warning("Local license check failed: %s", exc)
            result = {
                "success": False,
                "message": f"Error reading local license: {exc}",
                "error_code": "LOCAL_LICENSE_INVALID",
            }
            self.cache.set(cache_key, result, ERROR_TTL)
            return result

        result = self._license_result(decrypted, fingerprint, "License verified locally")
        self.cache.set(cache_key, result, LOCAL_TTL)
        return result

    def verify_offline_first(self, force_remote: bool = False) -> dict:
        """
        Local license first (no network); the remote server only when the
        local check fails for a reason other than expiry.
        """
        if force_remote:
            self.clear_cache()
        fingerprint = self.generate_fingerprint()

        local = self.check_local_license(fingerprint)
        if local.get("success") or local.get("expired"):
            return {**local, "source": "local", "offline": True}

        remote = self.fetch_remote_license(fingerprint)
        if remote.get("success"):
            return {**remote, "source": "remote", "offline": False}
        if remote.get("network_error"):
            return {
                "success": False,
                "message": "Cannot verify the license: no local license and the server is unreachable",
                "needs_first_activation": True,
                "offline": True,
                "local_error": local.get("message"),
                "error": remote.get("error"),
                "error_code": "NETWORK_ERROR",
            }
        return {
            "success": False,
            "message": remote.get("message") or "No active license for this device",
            "needs_first_activation": True,
            "source": "remote",
            "offline": False,
            "details": remote.get("details"),
            "error_code": remote.get("error_code"),
        }

    # -------------------------------------------------------------------------
    # activation
    # -------------------------------------------------------------------------

    def _activation_payload(self, location: Optional[dict]) -> dict:
        location_info = DEFAULT_LOCATION
        if isinstance(location, dict) and location.get("latitude") and location.get("longitude"):
            location_info = f"{location['latitude']},{location['longitude']}"
        return {
            "device_id": self.generate_fingerprint(),
            "ip_address": self._ip_provider(),
            "location": location_info,
        }

    def _complete_activation(self, response: dict, fingerprint: str) -> dict:
        files = response.get("files") or {}
        if files.get(LICENSE_FILE) and files.get(PUBLIC_KEY_FILE):
            self._write_files(files[LICENSE_FILE], files[PUBLIC_KEY_FILE])
            try:
                decrypted = self.decrypt_license(files[LICENSE_FILE], fingerprint)
            except LicenseDecryptError as exc:
                return {"success": False, "message": str(exc), "error_code": "DECRYPT_FAILED"}
            result = self._license_result(decrypted, fingerprint, "Activated successfully")
        else:
            fetched = self.fetch_remote_license(fingerprint)
            if not fetched.get("success"):
                return {
                    "success": False,
                    "message": "Activated, but fetching the license files failed",
                    "details": fetched.get("message"),
                    "error_code": "LICENSE_FETCH_FAILED",
                }
            result = {**fetched, "message": "Activated successfully"}

        self.clear_cache()
        result["activated"] = True
        result["license_type"] = result.get("license_type") or response.get("license_type")
        if result.get("user_id") is None:
            result["user_id"] = response.get("userId")
        return result

    def _post_activation(self, call: Callable[[dict], dict], payload: dict) -> dict:
        fingerprint = payload["device_id"]
        try:
            response = call(payload)
        except LicenseApiError as exc:
            return {
                "success": False,
                "message": "Cannot reach the activation server",
                "error": str(exc),
                "error_code": "NETWORK_ERROR",
            }
        if response.get("success") is False or response.get("error"):
            return {
                "success": False,
                "message": response.get("message") or response.get("error") or "Activation failed, please try again",
                "details": response,
                "error_code": response.get("errorCode") or "INVALID_RESPONSE",
            }
        result = self._complete_activation(response, fingerprint)
        if result.get("success"):
            logger.info("License activated (type=%s)", result.get("license_type"))
        return result

    def first_activation(self, location: Optional[dict] = None, code: str | None = None) -> dict:
        payload = self._activation_payload(location)
        if code and code.strip():
            payload["code"] = code.strip()
        return self._post_activation(self.client.first_activation, payload)

    def activate(self, code: str, location: Optional[dict] = None) -> dict:
        if not code or not str(code).strip():
            return {"success": False, "message": "Activation code is required", "error_code": "MISSING_CODE"}
        payload = self._activation_payload(location)
        payload["activation_code"] = str(code).strip()
        return self._post_activation(self.client.activate, payload)

    def diagnose(self) -> dict:
        """Which fingerprint variation and key scheme open the local license, if any."""
        fingerprint = self.generate_fingerprint()
        report = {
            "fingerprint": fingerprint,
            "license_dir": str(self.license_dir),
            "license_file_exists": self.license_path.exists(),
            "public_key_exists": self.public_key_path.exists(),
            "variations": fingerprint_variations(fingerprint),
            "cache_keys": self.cache.keys(),
            "decryption": None,
        }
        if report["license_file_exists"]:
            try:
                decrypted = self.decrypt_license(self.license_path.read_text(encoding="utf-8"), fingerprint)
                report["decryption"] = {
                    "success": True,
                    "variation_used": decrypted["variation_used"],
                    "key_method": decrypted["key_method"],
                }
            except (OSError, LicenseDecryptError) as exc:
                report["decryption"] = {"success": False, "error": str(exc)}
        return report
