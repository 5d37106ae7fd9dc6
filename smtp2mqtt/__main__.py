"""Entry point for the bridge.

Usage::

    python -m smtp2mqtt [config.yml]

The path defaults to ``$SMTP2MQTT_CONFIG`` or ``config.yml``.
"""

from __future__ import annotations

import asyncio
import os
import sys

DEFAULT_CONFIG_PATH = "config.yml"


def main() -> None:
    if len(sys.argv) > 2 or (len(sys.argv) == 2 and sys.argv[1] in ("-h", "--help")):
        print("Usage: python -m smtp2mqtt [config.yml]", file=sys.stderr)
        sys.exit(1)

    from .bridge import Smtp2MqttBridge
    from .config import ConfigError, load_config

    if len(sys.argv) == 2:
        path = sys.argv[1]
    else:
        path = os.environ.get("SMTP2MQTT_CONFIG", DEFAULT_CONFIG_PATH)

    try:
        config = load_config(path)
    except ConfigError as exc:
        print(f"smtp2mqtt: {exc}", file=sys.stderr)
        sys.exit(1)

    bridge = Smtp2MqttBridge(config)
    asyncio.run(bridge.run())


if __name__ == "__main__":
    main()
