"""
Command resolution for the Field Nodes terminal.

The stage graph is data: STAGE_ROUTES maps every stage to its ordered
routes. Suggestions, hints and dispatch all read from the same table.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple


class Stage(str, Enum):
    ORIGIN = "origin"
    ORIENT = "orient"
    COVENANT = "covenant"
    IDENTIFY = "identify"
    LOGIN = "login"
    ACCOUNT_CONFIRMED = "account-confirmed"
    LINEAGE = "lineage"
    REFLECT = "reflect"
    LINK = "link"
    TEND = "tend"
    OFFER = "offer"
    CREATE_NODE = "create-node"
    BROWSE_NODES = "browse-nodes"
    NODE_DETAIL = "node-detail"


@dataclass(frozen=True)
class Route:
    """
    One (stage, command) edge of the stage graph.

    target None keeps the current stage. handler names the state machine
    method that performs the side effects; permission names the identity
    flag the command needs. anonymous routes skip that check when nobody
    is signed in at all.
    """
    command: str
    target: Optional[Stage]
    handler: str
    permission: Optional[str] = None
    hidden: bool = False
    anonymous: bool = False


@dataclass(frozen=True)
class ParsedInput:
    raw: str
    text: str
    verb: str
    args: str
    slashed: bool

    @property
    def is_empty(self) -> bool:
        return not self.text


def _home() -> Route:
    return Route("/home", Stage.ORIGIN, "home")


def _help() -> Route:
    return Route("/help", None, "help")


def _node() -> Route:
    return Route("/node", Stage.CREATE_NODE, "open_node_form", "can_create_nodes", anonymous=True)


def _browse() -> Route:
    return Route("/browse", Stage.BROWSE_NODES, "browse")


STAGE_ROUTES: Dict[Stage, Tuple[Route, ...]] = {
    Stage.ORIGIN: (
        _node(),
        _browse(),
        Route("/orient", Stage.ORIENT, "orient"),
        _home(),
        _help(),
        Route("/join", Stage.LOGIN, "join", hidden=True),
        Route("/reflect", Stage.LOGIN, "join", hidden=True),
    ),
    Stage.ORIENT: (
        _home(),
        _help(),
        Route("/explore", Stage.IDENTIFY, "identify_intro"),
    ),
    Stage.COVENANT: (
        _home(),
        Route("/agree", Stage.IDENTIFY, "identify_intro"),
        Route("/policy", None, "policy"),
        Route("/exit", Stage.ORIGIN, "exit_covenant"),
    ),
    Stage.IDENTIFY: (
        _home(),
        Route("/login", Stage.LOGIN, "login_prompt"),
        Route("/guest", Stage.LINEAGE, "guest"),
    ),
    Stage.LOGIN: (
        _home(),
        Route("/login", None, "login_prompt"),
    ),
    Stage.ACCOUNT_CONFIRMED: (
        _home(),
        Route("/explore", Stage.LINEAGE, "exploration"),
    ),
    Stage.LINEAGE: (
        _home(),
        _node(),
        _browse(),
        Route("/explore", None, "exploration"),
        _help(),
        Route("/map", None, "map", hidden=True),
        Route("/lineage", None, "lineage_info", hidden=True),
    ),
    Stage.REFLECT: (
        _home(),
        Route("/link", Stage.LINK, "link_reflection", "can_link_nodes"),
        Route("/tend", Stage.TEND, "tend", "can_tend_nodes"),
        Route("/explore", None, "explore_hint"),
        Route("/offer", Stage.OFFER, "offer", "can_create_nodes"),
        _node(),
        _browse(),
        _help(),
    ),
    Stage.LINK: (
        _home(),
        Route("/tend", Stage.TEND, "tend", "can_tend_nodes"),
        Route("/explore", None, "explore_hint"),
        Route("/offer", Stage.OFFER, "offer", "can_create_nodes"),
        _node(),
        _browse(),
        _help(),
        Route("/reflect", Stage.REFLECT, "return_to_reflect", hidden=True),
    ),
    Stage.TEND: (
        _home(),
        Route("/done", Stage.LINK, "done_tending"),
        _help(),
    ),
    Stage.OFFER: (
        _home(),
        Route("/publish", Stage.LINEAGE, "publish", "can_create_nodes"),
        Route("/back", Stage.REFLECT, "return_to_reflect"),
    ),
    Stage.CREATE_NODE: (
        _home(),
        Route("/cancel", Stage.LINEAGE, "cancel_node"),
        Route("/seed", Stage.LINEAGE, "seed_node"),
        Route("/unsource", None, "unsource"),
    ),
    Stage.BROWSE_NODES: (
        _home(),
        _node(),
        Route("/back", Stage.LINEAGE, "back_to_lineage"),
        Route("/search", None, "search"),
        Route("/filter", None, "filter"),
        _help(),
    ),
    Stage.NODE_DETAIL: (
        _home(),
        Route("/link", None, "link_node", "can_link_nodes"),
        Route("/tend", Stage.TEND, "tend_node", "can_tend_nodes"),
        Route("/back", Stage.BROWSE_NODES, "back_to_browse"),
        Route("/edit", None, "edit_node"),
        _help(),
    ),
}


def permitted_commands(stage: Stage) -> List[str]:
    """Suggestable commands of a stage, in declared order."""
    return [r.command for r in STAGE_ROUTES[stage] if not r.hidden]


def parse_input(raw: str) -> ParsedInput:
    """
    Splits prompt input into verb and arguments.

    One leading '/' is optional and the verb is case-folded. Text without a
    slash only counts as a command candidate when it is a single word, so
    free text such as a reflection sentence never triggers a command.
    """
    text = raw.strip()
    slashed = text.startswith("/")
    body = text[1:].strip() if slashed else text
    head, _, rest = body.partition(" ")
    if not slashed and rest:
        return ParsedInput(raw=raw, text=text, verb="", args=body, slashed=False)
    return ParsedInput(raw=raw, text=text, verb=head.casefold(), args=rest.strip(), slashed=slashed)


def resolve(parsed: ParsedInput, stage: Stage) -> Optional[Route]:
    """Finds the route for a parsed command in a stage, hidden routes included."""
    if not parsed.verb:
        return None
    command = "/" + parsed.verb
    for route in STAGE_ROUTES[stage]:
        if route.command == command:
            return route
    return None


def suggest(text: str, stage: Stage) -> str:
    """
    Completion for what the user is typing.

    Returns the first permitted command (list order) starting with the input,
    or '' when the input is not a command, already complete, or unmatched.
    """
    if not text.startswith("/"):
        return ""
    lowered = text.casefold()
    commands = permitted_commands(stage)
    if lowered in commands:
        return ""
    for command in commands:
        if command.startswith(lowered):
            return command
    return ""


def available_hint(stage: Stage) -> str:
    return "available: " + " · ".join(permitted_commands(stage))
