"""Configuration management - load/save XML settings"""

import xml.etree.ElementTree as ET
from dataclasses import fields
from pathlib import Path
from typing import Optional
from xml.dom import minidom

from .paths import GamePaths
from .schema import Settings
from ..logging_config import get_logger

logger = get_logger("config_manager")

# XML element name for each Settings field
_ELEMENTS = {
    "save_dir": "SaveDirectory",
    "transfer_interval": "TransferInterval",
    "refresh_interval": "RefreshInterval",
    "connect_timeout": "ConnectTimeout",
    "read_timeout": "ReadTimeout",
    "max_attempts": "MaxAttempts",
    "retry_base_delay": "RetryBaseDelay",
    "retry_max_delay": "RetryMaxDelay",
    "chunk_count": "ChunkCount",
    "api_base_url": "ApiBaseUrl",
}


class ConfigurationManager:
    """Manages user settings persistence.

    Handles loading and saving settings to XML format. A missing file
    yields the defaults; a malformed value falls back to its default.
    """

    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = config_path or GamePaths.CONFIG_FILE
        self.settings: Settings = Settings()

    def load(self) -> Settings:
        """Load settings from the XML file.

        Returns:
            Settings with loaded values, defaults if the file is missing

        Raises:
            ET.ParseError: If XML is malformed
        """
        if not self.config_path.exists():
            logger.info(f"No configuration at {self.config_path}, using defaults")
            self.settings = Settings()
            return self.settings

        logger.debug(f"Loading configuration from {self.config_path}")
        tree = ET.parse(self.config_path)
        root = tree.getroot()

        settings_elem = root.find("Settings")
        defaults = Settings()
        values = {}
        if settings_elem is not None:
            for f in fields(Settings):
                default = getattr(defaults, f.name)
                values[f.name] = self._parse_value(settings_elem, _ELEMENTS[f.name], f.name, default)

        self.settings = Settings(**values)
        logger.debug(f"Configuration loaded: {self.settings}")
        return self.settings

    def save(self) -> None:
        """Save current settings to the XML file.

        Creates the configuration directory if it doesn't exist.
        """
        logger.debug(f"Saving configuration to {self.config_path}")
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        root = ET.Element("GmrSync", version="1.0")
        settings_elem = ET.SubElement(root, "Settings")
        for f in fields(Settings):
            value = getattr(self.settings, f.name)
            ET.SubElement(settings_elem, _ELEMENTS[f.name]).text = "" if value is None else str(value)

        # Write pretty-printed XML
        xml_str = minidom.parseString(ET.tostring(root, encoding="unicode")).toprettyxml(indent="  ")
        # Remove extra blank lines that minidom adds
        lines = [line for line in xml_str.split('\n') if line.strip()]
        xml_str = '\n'.join(lines)

        self.config_path.write_text(xml_str, encoding="utf-8")

    # Helper methods for XML parsing
    @staticmethod
    def _parse_value(parent: ET.Element, tag: str, name: str, default):
        """Parse a child element into the type of the field's default."""
        elem = parent.find(tag)
        if elem is None or not elem.text or not elem.text.strip():
            return default
        text = elem.text.strip()

        if name == "save_dir":
            return GamePaths.expand_path(text)
        try:
            if isinstance(default, int):
                value = int(text)
            elif isinstance(default, float):
                value = float(text)
            else:
                return text
        except ValueError:
            logger.warning(f"Invalid value {text!r} for {tag}, using {default}")
            return default

        if value <= 0:
            logger.warning(f"{tag} must be positive, using {default}")
            return default
        return value
