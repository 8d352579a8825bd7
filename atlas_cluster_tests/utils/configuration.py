"""Test environment and Atlas configuration.

Framework knobs are read from environment variables when the module is imported. Atlas
settings are loaded by `AtlasTestConfig.load` from (in increasing precedence) built-in defaults,
the `atlas-client.properties` file, environment variables and explicit overrides.
"""

import dataclasses
import logging
import os
import pathlib as pl
import re
import tempfile
import typing as tp

from atlas_cluster_tests.utils import types as ttypes

LOGGER = logging.getLogger(__name__)

IS_XDIST = bool(os.environ.get("PYTEST_XDIST_TESTRUNUID"))

# Seconds between two polls of a cluster state
CLUSTER_POLL_INTERVAL = float(os.environ.get("CLUSTER_POLL_INTERVAL") or 10)
if CLUSTER_POLL_INTERVAL <= 0:
    msg = f"Invalid CLUSTER_POLL_INTERVAL: {CLUSTER_POLL_INTERVAL}"
    raise RuntimeError(msg)

# Resolve SCHEDULING_LOG
SCHEDULING_LOG: str | pl.Path = os.environ.get("SCHEDULING_LOG") or ""
if SCHEDULING_LOG:
    SCHEDULING_LOG = pl.Path(SCHEDULING_LOG).expanduser().resolve()

# Directory for lock files shared by all pytest workers
LOCKS_DIR = pl.Path(
    os.environ.get("LOCKS_DIR") or pl.Path(tempfile.gettempdir()) / "atlas-cluster-tests"
).expanduser()

DEFAULT_PROPERTIES_FILE = "atlas-client.properties"

DEFAULT_REGION = "US_EAST_1"
DEFAULT_CLOUD_PROVIDER = "AWS"
DEFAULT_MONGO_VERSION = "7.0"

# Property key -> environment variable that overrides it
ENV_OVERRIDES: tp.Final[dict[str, str]] = {
    "apiPublicKey": "ATLAS_API_PUBLIC_KEY",
    "apiPrivateKey": "ATLAS_API_PRIVATE_KEY",
    "testProjectId": "ATLAS_TEST_PROJECT_ID",
    "testOrgId": "ATLAS_TEST_ORG_ID",
    "testRegion": "ATLAS_TEST_REGION",
    "testCloudProvider": "ATLAS_TEST_CLOUD_PROVIDER",
    "testMongoVersion": "ATLAS_TEST_MONGO_VERSION",
}


class ConfigurationError(Exception):
    pass


def _to_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "yes", "1", "on")


# Whitespace as understood in properties files
_PROPS_WHITESPACE = " \t\f"

_PROPS_ESCAPE_RE = re.compile(r"\\(u[0-9a-fA-F]{4}|u|.)", re.DOTALL)
_PROPS_ESCAPES = {"t": "\t", "n": "\n", "r": "\r", "f": "\f"}


def _unescape_property(text: str) -> str:
    def _replace(match: re.Match) -> str:
        seq = match.group(1)
        if seq == "u":
            msg = f"Malformed \\uxxxx escape in '{text}'"
            raise ValueError(msg)
        if seq.startswith("u"):
            return chr(int(seq[1:], 16))
        return _PROPS_ESCAPES.get(seq, seq)

    return _PROPS_ESCAPE_RE.sub(_replace, text)


def _get_logical_lines(lines: tp.Iterable[str]) -> tp.Iterator[str]:
    """Join lines ending with an odd number of backslashes, skip comments and blank lines."""
    buffer: list[str] = []
    for raw_line in lines:
        line = raw_line.rstrip("\r\n").lstrip(_PROPS_WHITESPACE)
        if not buffer and (not line or line[0] in "#!"):
            continue

        backslashes = len(line) - len(line.rstrip("\\"))
        if backslashes % 2:
            buffer.append(line[:-1])
            continue

        buffer.append(line)
        yield "".join(buffer)
        buffer = []

    if buffer:
        yield "".join(buffer)


def _split_property(line: str) -> tuple[str, str]:
    """Split the line on the first unescaped `=`, `:` or whitespace."""
    idx = 0
    while idx < len(line):
        char = line[idx]
        if char == "\\":
            idx += 2
            continue
        if char in "=:" or char in _PROPS_WHITESPACE:
            break
        idx += 1

    value = line[idx:].lstrip(_PROPS_WHITESPACE)
    if value[:1] in ("=", ":"):
        value = value[1:].lstrip(_PROPS_WHITESPACE)

    return _unescape_property(line[:idx]), _unescape_property(value)


def load_properties(properties_file: ttypes.FileType) -> dict[str, str]:
    """Load key-value pairs from a Java-style properties file."""
    properties: dict[str, str] = {}
    try:
        with open(properties_file, encoding="utf-8") as in_fp:
            for line in _get_logical_lines(in_fp):
                key, value = _split_property(line)
                properties[key] = value
    except (OSError, ValueError) as exc:
        msg = f"Failed to read properties file '{properties_file}': {exc}"
        raise ConfigurationError(msg) from exc

    return properties


def get_properties_file() -> pl.Path:
    return pl.Path(os.environ.get("ATLAS_CLIENT_PROPERTIES") or DEFAULT_PROPERTIES_FILE)


@dataclasses.dataclass(frozen=True)
class AtlasTestConfig:
    """Configuration of the Atlas project used for testing."""

    api_public_key: str = ""
    api_private_key: str = dataclasses.field(default="", repr=False)
    project_id: str = ""
    org_id: str = ""
    region: str = DEFAULT_REGION
    cloud_provider: str = DEFAULT_CLOUD_PROVIDER
    mongo_version: str = DEFAULT_MONGO_VERSION
    debug_level: int = 0
    rate_limit_enabled: bool = True
    cluster_reuse_enabled: bool = True
    shared_clusters_enabled: bool = True
    cluster_timeout_minutes: int = 15
    cleanup_isolated_clusters: bool = True

    @classmethod
    def from_properties(cls, properties: tp.Mapping[str, str]) -> "AtlasTestConfig":
        """Create configuration out of property keys and their string values."""

        def _get(key: str, default: str = "") -> str:
            return (properties.get(key) or default).strip()

        try:
            return cls(
                api_public_key=_get("apiPublicKey"),
                api_private_key=_get("apiPrivateKey"),
                project_id=_get("testProjectId"),
                org_id=_get("testOrgId"),
                region=_get("testRegion", DEFAULT_REGION),
                cloud_provider=_get("testCloudProvider", DEFAULT_CLOUD_PROVIDER),
                mongo_version=_get("testMongoVersion", DEFAULT_MONGO_VERSION),
                debug_level=int(_get("debugLevel", "0")),
                rate_limit_enabled=_to_bool(_get("rateLimitEnabled", "true")),
                cluster_reuse_enabled=_to_bool(_get("clusterReuseEnabled", "true")),
                shared_clusters_enabled=_to_bool(_get("sharedClustersEnabled", "true")),
                cluster_timeout_minutes=int(_get("clusterTimeoutMinutes", "15")),
                cleanup_isolated_clusters=_to_bool(_get("cleanupIsolatedClusters", "true")),
            )
        except ValueError as exc:
            msg = f"Invalid numeric value in Atlas configuration: {exc}"
            raise ConfigurationError(msg) from exc

    @classmethod
    def load(
        cls, properties_file: ttypes.FileType | None = None, **overrides: str
    ) -> "AtlasTestConfig":
        """Load configuration from properties file, environment variables and overrides."""
        properties: dict[str, str] = {}

        props_path = pl.Path(properties_file) if properties_file else get_properties_file()
        if props_path.is_file():
            properties.update(load_properties(props_path))
            LOGGER.info(f"Loaded configuration from '{props_path}'.")
        elif properties_file:
            msg = f"Properties file '{props_path}' doesn't exist."
            raise ConfigurationError(msg)
        else:
            LOGGER.debug(f"Properties file '{props_path}' not found.")

        for prop_key, env_key in ENV_OVERRIDES.items():
            env_value = (os.environ.get(env_key) or "").strip()
            if env_value:
                properties[prop_key] = env_value

        properties.update({k: v for k, v in overrides.items() if v is not None})

        return cls.from_properties(properties)

    @property
    def has_required_credentials(self) -> bool:
        return bool(self.api_public_key and self.api_private_key)

    @property
    def is_configured_for_testing(self) -> bool:
        return self.has_required_credentials and bool(self.project_id or self.org_id)

    @property
    def cluster_timeout_secs(self) -> int:
        return self.cluster_timeout_minutes * 60

    def validate(self) -> None:
        """Check that the credentials are configured."""
        if not self.has_required_credentials:
            msg = (
                "Atlas API credentials not configured. Set `apiPublicKey` and `apiPrivateKey` "
                "in the properties file or `ATLAS_API_PUBLIC_KEY` and `ATLAS_API_PRIVATE_KEY` "
                "environment variables."
            )
            raise ConfigurationError(msg)

    def get_summary(self) -> str:
        """Return summary of the configuration, without revealing secrets."""

        def _mark(value: bool) -> str:
            return "configured" if value else "missing"

        lines = [
            "Atlas Configuration Summary:",
            f"  Credentials: {_mark(self.has_required_credentials)}",
            f"  Test Project: {self.project_id or 'not set'}",
            f"  Test Org: {self.org_id or 'not set'}",
            f"  Region: {self.region}",
            f"  Provider: {self.cloud_provider}",
            f"  MongoDB: {self.mongo_version}",
            f"  Ready for testing: {self.is_configured_for_testing}",
        ]
        return "\n".join(lines)
