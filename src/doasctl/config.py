"""Project-wide timing constants and config-file loading.

Central place for the connector's fixed timings and the TOML config
that names the device to talk to.  Import individual names where
needed.

Example:
    >>> from doasctl.config import load_config, HEARTBEAT_S
    >>> cfg = load_config("doasctl.toml")
    >>> cfg["machine"]
    1
"""

import tomllib

# A pending request older than this may be evicted by the next send.
STALE_S = 3.0

# How long a matched request keeps its slot after the reply arrives.
GRACE_S = 0.2

# Retry interval for a send that finds its address busy.
BUSY_RETRY_S = 0.5

# Fixed delay before reconnecting after a transport error.
RECONNECT_S = 3.0

# Liveness read interval while connected.
HEARTBEAT_S = 60.0

# Default upper bound a caller waits for a reply, in seconds.
DEFAULT_TIMEOUT_S = 5.0


def load_config(path: str) -> dict:
    """Read a TOML config file and validate required keys.

    Required keys: ``host`` (str), ``port`` (int, 1-65535), ``machine``
    (int, 0-255).  Optional: ``timeout`` (number, seconds),
    ``reconnect_on_close`` (bool), and a ``[gateway]`` section with
    ``serial`` (str), ``baudrate`` (int), ``listen_port`` (int) and
    ``listen_host`` (str).

    Raises:
        ValueError: If any required key is missing or has the wrong type.

    Example:
        >>> cfg = load_config("doasctl.toml")
        >>> cfg["host"], cfg["port"]
        ('192.168.1.50', 8899)
    """
    with open(path, "rb") as f:
        raw = tomllib.load(f)

    _require_str(raw, "host")
    _require_int(raw, "port")
    _require_int(raw, "machine")
    if not (1 <= raw["port"] <= 65535):
        raise ValueError("port must be in range 1-65535, got %d" % raw["port"])
    if not (0 <= raw["machine"] <= 255):
        raise ValueError("machine must be in range 0-255, got %d" % raw["machine"])

    timeout = raw.get("timeout", DEFAULT_TIMEOUT_S)
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)):
        raise ValueError("timeout must be a number, got %s" % type(timeout).__name__)
    if timeout <= 0:
        raise ValueError("timeout must be positive, got %s" % timeout)

    reconnect_on_close = raw.get("reconnect_on_close", False)
    if not isinstance(reconnect_on_close, bool):
        raise ValueError(
            "reconnect_on_close must be bool, got %s"
            % type(reconnect_on_close).__name__
        )

    result = {
        "host": raw["host"],
        "port": raw["port"],
        "machine": raw["machine"],
        "timeout": float(timeout),
        "reconnect_on_close": reconnect_on_close,
    }

    if "gateway" in raw:
        result["gateway"] = _gateway_section(raw)

    return result


def _gateway_section(raw: dict[str, object]) -> dict:
    """Validate the [gateway] section and fill in defaults."""
    gateway = raw["gateway"]
    if not isinstance(gateway, dict):
        raise ValueError("[gateway] must be a table")
    _require_str(gateway, "serial", "gateway.")
    _require_int(gateway, "baudrate", "gateway.")
    _require_int(gateway, "listen_port", "gateway.")
    listen_host = gateway.get("listen_host", "0.0.0.0")
    if not isinstance(listen_host, str):
        raise ValueError(
            "gateway.listen_host must be str, got %s" % type(listen_host).__name__
        )
    return {
        "serial": gateway["serial"],
        "baudrate": gateway["baudrate"],
        "listen_host": listen_host,
        "listen_port": gateway["listen_port"],
    }


def _require_str(raw: dict[str, object], key: str, prefix: str = "") -> None:
    """Validate that *key* exists in *raw* and is a str."""
    if key not in raw:
        raise ValueError("missing required key: %s%s" % (prefix, key))
    if not isinstance(raw[key], str):
        raise ValueError(
            "%s%s must be str, got %s" % (prefix, key, type(raw[key]).__name__)
        )


def _require_int(raw: dict[str, object], key: str, prefix: str = "") -> None:
    """Validate that *key* exists in *raw* and is an int."""
    if key not in raw:
        raise ValueError("missing required key: %s%s" % (prefix, key))
    if isinstance(raw[key], bool) or not isinstance(raw[key], int):
        raise ValueError(
            "%s%s must be int, got %s" % (prefix, key, type(raw[key]).__name__)
        )
