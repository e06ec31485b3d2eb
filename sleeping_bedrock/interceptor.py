"""Turns Bedrock connection attempts into wake signals."""

from .engine import ConnectionEvent
from .models import PlayerSignal, Settings, WakeCallback


class ConnectionInterceptor:
    """Disconnects every connecting client and raises one wake signal for it."""

    def __init__(self, settings: Settings, wake_callback: WakeCallback, log_sink):
        self.settings = settings
        self.wake_callback = wake_callback
        self.log = log_sink
        self.connections = 0

    def __call__(self, event: ConnectionEvent) -> None:
        session = event.session
        self.connections += 1

        address = "" if self.settings.hide_ip_in_logs else session.get_address()
        self.log.info(f"A player connected {address}".rstrip())

        # Failures are not retried, the wake signal below must still go out
        try:
            session.disconnect(self.settings.login_message)
        except Exception as e:
            self.log.error(f"Failed to disconnect player: {e}")
        try:
            session.close()
        except Exception as e:
            self.log.error(f"Failed to close player session: {e}")

        try:
            self.wake_callback(PlayerSignal.bedrock())
        except Exception as e:
            self.log.error(f"Error in wake callback: {e}")
