"""Where doasctl finds its config file.

With no ``-c`` option the file named by ``$DOASCTL_CONFIG`` is used;
failing that, ``doasctl.toml`` is searched for in order:

  ./doasctl.toml
  $XDG_CONFIG_HOME/doasctl/doasctl.toml   (~/.config/doasctl/ if unset)
  /etc/doasctl/doasctl.toml
"""

import os

ENV_VAR = "DOASCTL_CONFIG"
ETC_DIR = "/etc/doasctl"
DEFAULT_CONFIG = "doasctl.toml"


def user_config_dir() -> str:
    """Per-user config directory, following the XDG base directory rules."""
    base = os.environ.get("XDG_CONFIG_HOME") or os.path.expanduser("~/.config")
    return os.path.join(base, "doasctl")


def config_candidates(name: str | None = None) -> list[str]:
    """Absolute paths to try, best first.

    An explicit *name* wins over ``$DOASCTL_CONFIG``.  A name with a
    directory part (``~/cfg/unit2.toml``, ``conf/x.toml``) is a single
    candidate; a bare file name is looked up in every search directory.
    """
    if name is None:
        override = os.environ.get(ENV_VAR)
        if override:
            return [os.path.abspath(os.path.expanduser(override))]
        name = DEFAULT_CONFIG

    name = os.path.expanduser(name)
    if os.path.dirname(name):
        return [os.path.abspath(name)]
    return [
        os.path.abspath(name),
        os.path.join(user_config_dir(), name),
        os.path.join(ETC_DIR, name),
    ]


def resolve_config(name: str | None = None) -> str:
    """Return the first existing config file for *name*.

    Raises:
        FileNotFoundError: Listing every path that was tried.
    """
    tried = config_candidates(name)
    for path in tried:
        if os.path.isfile(path):
            return path
    raise FileNotFoundError("no config file; tried %s" % ", ".join(tried))
