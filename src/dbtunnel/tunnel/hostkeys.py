"""Server host key fingerprints and trust verification."""

import base64
import hashlib
import os
import threading
from collections.abc import Callable, Iterable
from pathlib import Path

import paramiko
from paramiko.hostkeys import HostKeyEntry, InvalidHostKey

from ..common.exceptions import HostKeyVerificationFailed
from ..common.logging import get_logger
from .models import HostKeyPolicy

logger = get_logger(__name__)

DEFAULT_KNOWN_HOSTS = Path("~/.ssh/known_hosts")

# confirm(host, port, fingerprint) -> trust the key?
ConfirmCallback = Callable[[str, int, str], bool]


def format_fingerprint(key: paramiko.PKey, algorithm: str = "sha256") -> str:
    """Render a host key fingerprint the way OpenSSH prints it.

    Args:
        key: Server public key
        algorithm: ``sha256`` (``SHA256:<base64>``) or ``md5`` (``MD5:aa:bb:..``)

    Returns:
        Fingerprint string

    Raises:
        ValueError: If algorithm is not supported
    """
    blob = key.asbytes()
    algorithm = algorithm.lower()
    if algorithm == "sha256":
        digest = base64.b64encode(hashlib.sha256(blob).digest()).decode("ascii")
        return "SHA256:" + digest.rstrip("=")
    if algorithm == "md5":
        hexdigest = hashlib.md5(blob).hexdigest()
        pairs = [hexdigest[i : i + 2] for i in range(0, len(hexdigest), 2)]
        return "MD5:" + ":".join(pairs)
    raise ValueError(f"Unsupported fingerprint algorithm: {algorithm}")


def normalize_fingerprint(value: str) -> str:
    """Canonicalize a pinned fingerprint for comparison.

    Raises:
        ValueError: If the value is not a ``SHA256:`` or ``MD5:`` fingerprint
    """
    prefix, sep, body = value.strip().partition(":")
    if not sep or not body:
        raise ValueError(f"Fingerprint must look like SHA256:<base64> or MD5:<hex>: {value!r}")

    prefix = prefix.upper()
    if prefix == "SHA256":
        return "SHA256:" + body.rstrip("=")
    if prefix == "MD5":
        return "MD5:" + body.lower()
    raise ValueError(f"Unsupported fingerprint type: {prefix}")


def known_hosts_name(host: str, port: int) -> str:
    """Host pattern used in known_hosts files for ``host:port``."""
    if port == 22:
        return host
    return f"[{host}]:{port}"


class HostKeyVerifier:
    """Decides whether a server host key is trusted.

    Pinned fingerprints take precedence: when any are configured the key must
    match one of them and the known_hosts file is not consulted. Otherwise the
    key is looked up in the known_hosts file and an unknown key is handled
    according to the policy.
    """

    def __init__(
        self,
        policy: HostKeyPolicy = HostKeyPolicy.STRICT,
        known_hosts_path: Path | str | None = None,
        pinned: Iterable[str] = (),
        confirm: ConfirmCallback | None = None,
    ):
        self.policy = HostKeyPolicy(policy)
        self.known_hosts_path = Path(known_hosts_path or DEFAULT_KNOWN_HOSTS).expanduser()
        self.pinned = frozenset(normalize_fingerprint(p) for p in pinned)
        self.confirm = confirm
        self._lock = threading.Lock()

    def verify(self, host: str, port: int, key: paramiko.PKey) -> str:
        """Check ``key`` presented by ``host:port``.

        Returns:
            SHA256 fingerprint of the accepted key

        Raises:
            HostKeyVerificationFailed: If the key is not trusted
        """
        fingerprint = format_fingerprint(key)
        log = logger.bind(host=host, port=port, fingerprint=fingerprint)

        if self.pinned:
            candidates = {fingerprint, format_fingerprint(key, "md5")}
            if candidates & self.pinned:
                log.info("Host key matches pinned fingerprint")
                return fingerprint
            log.error("Host key does not match any pinned fingerprint")
            raise HostKeyVerificationFailed(
                f"Host key for {host}:{port} ({fingerprint}) does not match "
                "the pinned fingerprint",
                fingerprint=fingerprint,
            )

        name = known_hosts_name(host, port)
        with self._lock:
            host_keys = self._load()
            entry = host_keys.lookup(name)
            known = entry.get(key.get_name()) if entry is not None else None

            if known is not None:
                if known.asbytes() == key.asbytes():
                    log.info("Host key found in known hosts")
                    return fingerprint
                log.error("Host key has changed", known_hosts=str(self.known_hosts_path))
                raise HostKeyVerificationFailed(
                    f"Host key for {name} has changed ({fingerprint}); "
                    f"remove the old entry from {self.known_hosts_path} if this is expected",
                    fingerprint=fingerprint,
                )

            if not self._trust_unknown(host, port, fingerprint):
                log.error("Unknown host key rejected", policy=self.policy.value)
                raise HostKeyVerificationFailed(
                    f"Host key for {name} ({fingerprint}) is not trusted",
                    fingerprint=fingerprint,
                )

            self._append(name, key)
            log.warning("Added new host key to known hosts", known_hosts=str(self.known_hosts_path))
            return fingerprint

    def _trust_unknown(self, host: str, port: int, fingerprint: str) -> bool:
        if self.policy == HostKeyPolicy.ACCEPT_NEW:
            return True
        if self.policy == HostKeyPolicy.PROMPT:
            if self.confirm is None:
                logger.warning("Host key confirmation requested but no handler set")
                return False
            return bool(self.confirm(host, port, fingerprint))
        return False

    def _load(self) -> paramiko.HostKeys:
        """Read the known hosts file, skipping lines paramiko cannot use.

        Marker lines (``@cert-authority``, ``@revoked``), unsupported key
        types and malformed entries stay in the file and are ignored here.
        """
        host_keys = paramiko.HostKeys()
        if not self.known_hosts_path.is_file():
            return host_keys

        try:
            with open(self.known_hosts_path, encoding="utf-8") as f:
                lines = f.readlines()
        except (OSError, UnicodeDecodeError) as e:
            raise HostKeyVerificationFailed(
                f"Cannot read known hosts file {self.known_hosts_path}: {e}"
            ) from e

        for lineno, line in enumerate(lines, 1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if line.startswith("@"):
                logger.debug("Skipping marker line", line=lineno)
                continue
            try:
                entry = HostKeyEntry.from_line(line, lineno)
            except InvalidHostKey:
                logger.warning(
                    "Skipping invalid known hosts line",
                    known_hosts=str(self.known_hosts_path),
                    line=lineno,
                )
                continue
            if entry is None:
                continue  # key type paramiko does not support
            for hostname in entry.hostnames:
                host_keys.add(hostname, entry.key.get_name(), entry.key)
        return host_keys

    def _append(self, name: str, key: paramiko.PKey) -> None:
        """Append one entry, leaving existing lines untouched."""
        path = self.known_hosts_path
        line = HostKeyEntry([name], key).to_line()
        try:
            path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
            created = not path.exists()
            if not created and path.stat().st_size:
                with open(path, "rb") as f:
                    f.seek(-1, os.SEEK_END)
                    if f.read(1) != b"\n":
                        line = "\n" + line
            with open(path, "a", encoding="utf-8") as f:
                f.write(line)
            if created:
                os.chmod(path, 0o600)
        except OSError as e:
            raise HostKeyVerificationFailed(f"Cannot update known hosts file {path}: {e}") from e
