"""ServiceManager that records what the tunnel config held at stop time."""

from engarde_wizard.provision.services import ServiceManager
from engarde_wizard.shared import TUNNEL_UNIT


class RecordingServices(ServiceManager):
    """Real ServiceManager remembering the tunnel config wg-quick sees on stop."""

    def __init__(self, layout):
        super().__init__(layout.relay_unit_file.parent)
        self.tunnel_config = layout.tunnel_config
        self.seen_on_stop = []

    def stop(self, name):
        if name == TUNNEL_UNIT:
            self.seen_on_stop.append(self.tunnel_config.read_text())
        super().stop(name)
