from loguru import logger

from .mqtt_impl import LocalBroadcaster, MQTTBroadcaster


def create_broadcaster(
    url: str | None = None,
    connect_timeout: float = 5.0,
) -> MQTTBroadcaster | LocalBroadcaster:
    """Create and connect a broadcaster for the given broker URL.

    Args:
        url: MQTT broker URL (e.g., mqtt://<host_ip>:<port>).
             If None, returns an in-process LocalBroadcaster.
        connect_timeout: Seconds to wait for the MQTT handshake.

    Returns:
        A connected broadcaster. Callers own it and must disconnect it.

    Raises:
        RuntimeError: If broadcaster creation or connection fails.
    """
    if url is None:
        broadcaster = LocalBroadcaster()
        _ = broadcaster.connect()
        return broadcaster

    try:
        broadcaster = MQTTBroadcaster(url, connect_timeout=connect_timeout)
    except ValueError as e:
        logger.error(f"Error creating broadcaster: {e}")
        raise RuntimeError(f"Failed to create broadcaster: {e}") from e

    if not broadcaster.connect():
        broadcaster.disconnect()
        raise RuntimeError(
            f"Failed to connect to MQTT broker at {url}. "
            "Check that the broker is running and the URL is correct."
        )
    return broadcaster
