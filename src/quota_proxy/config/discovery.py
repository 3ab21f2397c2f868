from pathlib import Path


CONFIG_FILE_NAMES = (".quota_proxy.toml", "quota_proxy.toml")


def find_toml_config_file() -> Path | None:
    """Find the TOML configuration file for quota_proxy.

    Searches the current directory, then ``~/.quota-proxy/config.toml``.
    """
    candidates = [Path(name).resolve() for name in CONFIG_FILE_NAMES]
    candidates.append(Path("~/.quota-proxy").expanduser() / "config.toml")

    for candidate in candidates:
        if candidate.exists() and candidate.is_file():
            return candidate

    return None
