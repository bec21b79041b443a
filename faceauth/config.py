"""
Configuration Management Module

Loads the face authentication settings from config.yaml and keeps a single
parsed copy for the whole process. Each component reads its own top-level
section (quality, challenge, enrollment, matching, ...).

The file is located by walking up from this module until a config.yaml is
found. Set the FACEAUTH_CONFIG environment variable to load a different file.

Usage:
    from faceauth.config import get_config
    config = get_config()
    challenge_config = config["challenge"]
"""

import os
import yaml
from pathlib import Path
from typing import Any, Dict, Optional


CONFIG_ENV_VAR = "FACEAUTH_CONFIG"

# Store the singleton instance (module-level variable)
_config_instance: Optional[Dict[str, Any]] = None


def get_project_root() -> Path:
    """
    Find the project root directory.

    The project root is identified by the presence of a config.yaml file.
    This function walks up the directory tree from this file's location
    until it finds one.

    Returns:
        Path: The absolute path to the project root directory.

    Raises:
        FileNotFoundError: If config.yaml cannot be found in any parent directory.
    """
    current_dir = Path(__file__).resolve().parent

    while current_dir != current_dir.parent:
        if (current_dir / "config.yaml").exists():
            return current_dir
        current_dir = current_dir.parent

    raise FileNotFoundError(
        "Could not find config.yaml in any parent directory. "
        f"Run from within the project directory or set {CONFIG_ENV_VAR}."
    )


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from a YAML file.

    Args:
        config_path: Optional path to the config file. If not provided,
                     FACEAUTH_CONFIG is used, then config.yaml in the
                     project root.

    Returns:
        Dict containing all configuration values.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        yaml.YAMLError: If the config file contains invalid YAML.
    """
    if config_path is None:
        config_path = os.environ.get(CONFIG_ENV_VAR)

    if config_path is None:
        config_path = get_project_root() / "config.yaml"
    else:
        config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f)

    return config or {}


def get_config(reload: bool = False) -> Dict[str, Any]:
    """
    Get the configuration singleton.

    Args:
        reload: If True, forces reloading the configuration from disk.

    Returns:
        Dict containing all configuration values.

    Example:
        config = get_config()
        smile_target = config["challenge"]["smile_frames"]
    """
    global _config_instance

    if _config_instance is None or reload:
        _config_instance = load_config()

    return _config_instance


def get_section(section_name: str) -> Dict[str, Any]:
    """
    Get a specific top-level section from the configuration.

    Args:
        section_name: Name of the configuration section
                      (e.g., "quality", "challenge", "matching")

    Returns:
        Dict containing the section's configuration values.

    Raises:
        KeyError: If the section doesn't exist in the configuration.
    """
    config = get_config()

    if section_name not in config:
        raise KeyError(
            f"Configuration section '{section_name}' not found. "
            f"Available sections: {list(config.keys())}"
        )

    return config[section_name]


def get_optional_section(section_name: str) -> Dict[str, Any]:
    """
    Get a section, or an empty dict when no config file or section exists.

    Component factories use this so the library also works without a
    config.yaml next to it (built-in defaults apply).
    """
    try:
        return get_config().get(section_name) or {}
    except FileNotFoundError:
        return {}


# Convenience functions for commonly used configuration sections
def get_face_detection_config() -> Dict[str, Any]:
    """Get landmark detection configuration."""
    return get_section("face_detection")


def get_embedding_config() -> Dict[str, Any]:
    """Get embedding extraction configuration."""
    return get_section("embedding")


def get_quality_config() -> Dict[str, Any]:
    """Get embedding quality validation configuration."""
    return get_section("quality")


def get_challenge_config() -> Dict[str, Any]:
    """Get liveness challenge configuration."""
    return get_section("challenge")


def get_enrollment_config() -> Dict[str, Any]:
    """Get enrollment pipeline configuration."""
    return get_section("enrollment")


def get_matching_config() -> Dict[str, Any]:
    """Get matching algorithm configuration."""
    return get_section("matching")


def get_storage_config() -> Dict[str, Any]:
    """Get storage configuration."""
    return get_section("storage")


def get_api_config() -> Dict[str, Any]:
    """Get API configuration."""
    return get_section("api")


def get_server_config() -> Dict[str, Any]:
    """
    Get server configuration for the API.

    Returns:
        Dict with host and port for the API server.
    """
    api_config = get_api_config()
    base_url = api_config.get("base_url", "http://localhost:8000")

    # Format: http://host:port
    host = "0.0.0.0"
    port = 8000

    try:
        url_part = base_url.split("//")[-1]
        if ":" in url_part:
            host_part, port_str = url_part.rsplit(":", 1)
            port = int(port_str.rstrip("/"))
            if host_part != "localhost":
                host = host_part
    except (ValueError, IndexError):
        pass

    return {"host": host, "port": port}


if __name__ == "__main__":
    print("Testing configuration loader...")

    config = get_config()
    print(f"Successfully loaded config with sections: {list(config.keys())}")

    challenge_config = get_challenge_config()
    print(f"Stabilization frames: {challenge_config['stabilization_frames']}")
    print(f"Smile threshold: {challenge_config['smile_threshold']}")
