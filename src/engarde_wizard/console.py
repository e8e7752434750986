"""Management console for a provisioned node.

The console is a small state machine: it idles until an Action is chosen,
dispatches it synchronously and returns to idle, or stops for good on exit
or removal. ``next_state`` is pure so the transitions can be tested without
a terminal.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from .config import ProvisionConfig
from .errors import InvalidInputError
from .provision.flow import Provisioner
from .provision.policy import PolicyToggle
from .provision.services import ServiceManager, ServiceStatus
from .shared.logging import get_logger
from .shared.paths import TUNNEL_UNIT, Layout, NodeRole

logger = get_logger(__name__)


class Action(Enum):
    """Operator choices offered by the console."""

    STATUS_TUNNEL = "status_tunnel"
    STATUS_RELAY = "status_relay"
    RESTART_TUNNEL = "restart_tunnel"
    RESTART_RELAY = "restart_relay"
    FORWARDING_ON = "forwarding_on"
    FORWARDING_OFF = "forwarding_off"
    REGENERATE_BUNDLE = "regenerate_bundle"
    REMOVE = "remove"
    EXIT = "exit"


ACTION_LABELS = {
    Action.STATUS_TUNNEL: "Check WireGuard status",
    Action.STATUS_RELAY: "Check Engarde status",
    Action.RESTART_TUNNEL: "Restart WireGuard",
    Action.RESTART_RELAY: "Restart Engarde",
    Action.FORWARDING_ON: "Enable port forwarding to the client",
    Action.FORWARDING_OFF: "Disable port forwarding to the client",
    Action.REGENERATE_BUNDLE: "Regenerate the client bundle",
    Action.REMOVE: "Remove Engarde and WireGuard",
    Action.EXIT: "Exit",
}

SERVER_ACTIONS = list(Action)
CLIENT_ACTIONS = [
    Action.STATUS_TUNNEL,
    Action.STATUS_RELAY,
    Action.RESTART_TUNNEL,
    Action.RESTART_RELAY,
    Action.REMOVE,
    Action.EXIT,
]


class ConsoleState(Enum):
    """Console lifecycle. EXIT and REMOVED are terminal."""

    IDLE = "idle"
    EXIT = "exit"
    REMOVED = "removed"

    @property
    def terminal(self) -> bool:
        return self is not ConsoleState.IDLE


def next_state(state: ConsoleState, action: Action) -> ConsoleState:
    """Transition function of the console.

    Raises:
        InvalidInputError: If ``state`` is terminal.
    """
    if state.terminal:
        raise InvalidInputError(f"The console has stopped ({state.value}); run provisioning again")
    if action is Action.EXIT:
        return ConsoleState.EXIT
    if action is Action.REMOVE:
        return ConsoleState.REMOVED
    return ConsoleState.IDLE


@dataclass
class ActionResult:
    """What an action did, for the presentation layer."""

    action: Action
    message: str
    status: ServiceStatus | None = None


class ManagementConsole:
    """Dispatch operator actions against a provisioned node."""

    def __init__(
        self,
        layout: Layout,
        config: ProvisionConfig,
        services: ServiceManager | None = None,
        provisioner: Provisioner | None = None,
    ):
        self.layout = layout
        self.config = config
        self.services = services or ServiceManager(layout.relay_unit_file.parent)
        self.provisioner = provisioner or Provisioner(layout, services=self.services)
        self.state = ConsoleState.IDLE

    def actions(self) -> list[Action]:
        """Actions available for this node's role."""
        return SERVER_ACTIONS if self.layout.role is NodeRole.SERVER else CLIENT_ACTIONS

    def dispatch(self, action: Action) -> tuple[ConsoleState, ActionResult]:
        """Perform ``action`` and advance the state.

        Returns:
            The new state and what the action did.

        Raises:
            InvalidInputError: If the console has stopped or the action is
                not offered for this role.
        """
        new_state = next_state(self.state, action)
        if action not in self.actions():
            raise InvalidInputError(f"{ACTION_LABELS[action]} is not available on the client")

        logger.info("console_action", action=action.value)
        handler = getattr(self, f"_{action.value}")
        result = handler()
        self.state = new_state
        return new_state, result

    def run(
        self,
        choose: Callable[[list[Action]], Action],
        report: Callable[[ActionResult], None],
    ) -> ConsoleState:
        """Loop until exit or removal.

        Args:
            choose: Returns the operator's next action from those offered.
            report: Receives each action's result.

        Returns:
            The terminal state reached.
        """
        while not self.state.terminal:
            _, result = self.dispatch(choose(self.actions()))
            report(result)
        return self.state

    def _status_tunnel(self) -> ActionResult:
        status = self.services.status(TUNNEL_UNIT)
        return ActionResult(Action.STATUS_TUNNEL, _describe(status), status)

    def _status_relay(self) -> ActionResult:
        status = self.services.status(self.layout.relay_unit)
        return ActionResult(Action.STATUS_RELAY, _describe(status), status)

    def _restart_tunnel(self) -> ActionResult:
        self.services.restart(TUNNEL_UNIT)
        return ActionResult(Action.RESTART_TUNNEL, f"{TUNNEL_UNIT} restarted")

    def _restart_relay(self) -> ActionResult:
        self.services.restart(self.layout.relay_unit)
        return ActionResult(Action.RESTART_RELAY, f"{self.layout.relay_unit} restarted")

    def _forwarding_on(self) -> ActionResult:
        return self._toggle(Action.FORWARDING_ON, enable=True)

    def _forwarding_off(self) -> ActionResult:
        return self._toggle(Action.FORWARDING_OFF, enable=False)

    def _toggle(self, action: Action, enable: bool) -> ActionResult:
        toggle = PolicyToggle(self.layout, self.config, self.services)
        result = toggle.enable() if enable else toggle.disable()
        word = "enabled" if enable else "disabled"
        if not result.changed:
            return ActionResult(action, f"Port forwarding already {word}")
        return ActionResult(
            action,
            f"Port forwarding {word}; restarted {', '.join(result.restarted) or 'nothing'}",
        )

    def _regenerate_bundle(self) -> ActionResult:
        path = self.provisioner.export_bundle(self.config)
        return ActionResult(Action.REGENERATE_BUNDLE, f"Client bundle written to {path}")

    def _remove(self) -> ActionResult:
        removed = self.provisioner.teardown()
        return ActionResult(
            Action.REMOVE, f"Engarde and WireGuard removed ({len(removed)} files deleted)"
        )

    def _exit(self) -> ActionResult:
        return ActionResult(Action.EXIT, "Bye")


def _describe(status: ServiceStatus) -> str:
    enabled = "enabled" if status.enabled else "disabled"
    active = "active" if status.active else "inactive"
    return f"{status.name}: {enabled}, {active}"
