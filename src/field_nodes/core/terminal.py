"""
Terminal State Machine

Ties identity, drafts and command resolution into screen transitions.
Every submitted line runs through handle(): the running animation is
cancelled, the command is dispatched through STAGE_ROUTES, store calls are
offloaded to a worker thread, and only then the new lines are played back.
"""

import asyncio
from dataclasses import dataclass, field, replace
from typing import Callable, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from .commands import (
    STAGE_ROUTES,
    ParsedInput,
    Route,
    Stage,
    available_hint,
    parse_input,
    resolve,
    suggest,
)
from .editor import NodeEditor
from .typewriter import TypewriterScheduler
from . import screens
from ..config import settings
from ..models.identity import VALID_ROLES, UserIdentity, format_handle, verify_password
from ..models.node import (
    ArtifactMetadata,
    Node,
    NodeArtifact,
    NodeOrigin,
    NodeSystemContext,
    SearchOptions,
    utc_now,
)
from ..storage.engine import NodeStoreBase
from ..storage.errors import (
    NodeNotFoundError,
    PermissionDeniedError,
    StorageError,
    ValidationError,
)
from ..storage.kv import PersistentStore
from ..utils.events import log_debug, log_event

UNREACHABLE_MESSAGE = "the field could not be reached. please try again."
BUSY_MESSAGE = "still working… please wait."

_PERMISSION_NOUNS = {
    "can_create_nodes": "create nodes",
    "can_link_nodes": "link nodes",
    "can_tend_nodes": "tend nodes",
}

_FILTER_KEYS = {
    "status": "status",
    "author": "author",
    "field": "field",
    "tag": "tags",
    "tags": "tags",
    "sort": "sort_by",
    "order": "sort_order",
}


@dataclass
class TerminalState:
    stage: Stage = Stage.ORIGIN
    identity: Optional[UserIdentity] = None
    account_step: str = "name"  # name | password | complete
    pending_name: str = ""
    draft: str = ""
    evidence: List[Tuple[str, str]] = field(default_factory=list)  # ("source" | "note", text)
    editor: Optional[NodeEditor] = None
    show_node_form: bool = False
    browse_nodes: List[Node] = field(default_factory=list)
    current_node: Optional[Node] = None
    tend_target: Optional[str] = None
    lines: List[str] = field(default_factory=list)
    unlocked_seed: bool = False


@dataclass
class CommandResult:
    """
    Outcome of one submitted line.

    kind is one of ok, validation, denied, not_found, error, hint.
    """
    stage: Stage
    accepted: bool
    kind: str = "ok"
    message: str = ""


class TerminalStateMachine:
    def __init__(
        self,
        store: PersistentStore,
        nodes: NodeStoreBase,
        typewriter: Optional[TypewriterScheduler] = None,
        renderer: Optional[Callable[[List[str]], None]] = None,
        identity: Optional[UserIdentity] = None,
    ):
        self.store = store
        self.nodes = nodes
        self.typewriter = typewriter or TypewriterScheduler(store)
        self.renderer = renderer
        self.state = TerminalState(identity=identity)
        self._busy = False

    # --- public surface ---

    @property
    def stage(self) -> Stage:
        return self.state.stage

    @property
    def lines(self) -> List[str]:
        return list(self.state.lines)

    @property
    def busy(self) -> bool:
        return self._busy

    def suggestion(self, text: str) -> str:
        return suggest(text, self.state.stage)

    async def boot(self) -> None:
        """Shows the boot screen from a clean origin."""
        self.typewriter.cancel()
        self.state.lines = screens.boot_lines()
        self._play([])

    async def submit(self, raw: str) -> CommandResult:
        """Entry point for the prompt: refuses new input while a store write is running."""
        if self._busy:
            return CommandResult(self.state.stage, False, "hint", BUSY_MESSAGE)
        return await self.handle(raw)

    async def handle(self, raw: str) -> CommandResult:
        self.typewriter.cancel()
        before = list(self.state.lines)
        result = await self._dispatch(raw)
        self._play(before)
        return replace(result, stage=self.state.stage)

    async def wait_idle(self) -> bool:
        return await self.typewriter.wait()

    # --- playback ---

    def _play(self, before: List[str]) -> None:
        if self.renderer is None:
            return
        lines = self.state.lines
        if before and lines[:len(before)] == before:
            base, fresh = before, lines[len(before):]
        else:
            base, fresh = [], list(lines)
        render = self.renderer
        self.typewriter.start(fresh, lambda frame: render(base + frame))

    # --- output helpers ---

    def _write(self, *texts: str) -> None:
        self.state.lines.extend(texts)

    def _show_screen(self, lines: List[str]) -> None:
        self.state.lines = list(lines)

    def _echo(self, parsed: ParsedInput) -> None:
        masked = (
            self.state.stage in (Stage.IDENTIFY, Stage.LOGIN)
            and self.state.account_step == "password"
            and not parsed.slashed
        )
        self._write("", "> " + ("•" * len(parsed.text) if masked else parsed.text))

    def _reply(self, kind: str, *messages: str) -> CommandResult:
        self._write(*messages)
        return CommandResult(self.state.stage, kind == "ok", kind, " ".join(messages))

    def _ok(self, *messages: str) -> CommandResult:
        return self._reply("ok", *messages)

    def _set_stage(self, stage: Stage) -> None:
        if stage != self.state.stage:
            log_event("STAGE_CHANGED", {"from": self.state.stage.value, "to": stage.value})
            self.state.stage = stage

    @property
    def _handle(self) -> str:
        identity = self.state.identity
        return format_handle(identity.name if identity else None)

    # --- store access ---

    async def _call(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn, *args)

    async def _mutate(self, fn, *args):
        self._busy = True
        try:
            return await self._call(fn, *args)
        finally:
            self._busy = False

    # --- dispatch ---

    async def _dispatch(self, raw: str) -> CommandResult:
        parsed = parse_input(raw)
        if parsed.is_empty:
            return await self._guarded(self._on_empty())

        self._echo(parsed)
        route = resolve(parsed, self.state.stage)
        if route is None:
            if parsed.slashed:
                return self._unknown(parsed)
            return await self._guarded(self._on_text(parsed))

        denial = self._check_permission(route)
        if denial is not None:
            return denial

        handler = getattr(self, f"_cmd_{route.handler}")
        result = await self._guarded(handler(parsed))
        if result.accepted and route.target is not None:
            self._set_stage(route.target)
        return result

    async def _guarded(self, work) -> CommandResult:
        """Turns failures into stage-local messages; the stage never moves on error."""
        try:
            return await work
        except PermissionDeniedError as e:
            return self._reply("denied", f"{e} {e.remedy}")
        except ValidationError as e:
            return self._reply("validation", str(e))
        except NodeNotFoundError as e:
            return self._reply("not_found", f"no node {e.node_id} in the field.")
        except StorageError as e:
            log_debug(f"[STORAGE_ERROR] stage={self.state.stage.value}: {e}")
            log_event("STORAGE_ERROR", {"stage": self.state.stage.value, "error": str(e)})
            return self._reply("error", UNREACHABLE_MESSAGE)

    def _check_permission(self, route: Route) -> Optional[CommandResult]:
        identity = self.state.identity
        if route.permission is None:
            return None
        noun = _PERMISSION_NOUNS.get(route.permission, "write")
        if identity is None:
            if route.anonymous:
                return None
            return self._reply("denied", f"sign in to {noun}. type /login to create an account.")
        if getattr(identity.permissions, route.permission):
            return None
        return self._reply("denied", f"guests cannot {noun}. type /login to create an account.")

    def _unknown(self, parsed: ParsedInput) -> CommandResult:
        messages = [available_hint(self.state.stage)]
        hint = suggest("/" + parsed.verb, self.state.stage)
        if hint:
            messages.append(f"did you mean {hint}?")
        return self._reply("hint", *messages)

    # --- empty enter ---

    async def _on_empty(self) -> CommandResult:
        stage = self.state.stage
        if stage == Stage.ORIENT:
            self._show_screen(screens.covenant_screen())
            self._set_stage(Stage.COVENANT)
            return CommandResult(stage, True)
        if stage == Stage.COVENANT:
            return self._reply("hint", "type /agree to continue or /policy to review terms.")
        if stage == Stage.ACCOUNT_CONFIRMED:
            self._show_screen(screens.exploration_intro(self._handle))
            self._set_stage(Stage.LINEAGE)
            return CommandResult(stage, True)
        return CommandResult(stage, False, "hint")

    # --- free text ---

    async def _on_text(self, parsed: ParsedInput) -> CommandResult:
        text = parsed.text
        stage = self.state.stage
        if stage == Stage.IDENTIFY:
            return await self._text_account(text)
        if stage == Stage.LOGIN:
            return await self._text_login(text)
        if stage == Stage.REFLECT:
            return await self._text_reflect(text)
        if stage == Stage.TEND:
            return await self._text_tend(text)
        if stage == Stage.CREATE_NODE:
            return self._text_node_form(text)
        if stage == Stage.BROWSE_NODES and text.isdecimal():
            return await self._text_pick_node(int(text))
        if stage == Stage.ORIENT:
            return self._reply("hint", "press Enter to continue or /explore to skip.")
        if stage == Stage.ACCOUNT_CONFIRMED:
            return self._reply("hint", "press Enter to begin exploring")
        return self._unknown(parsed)

    async def _text_account(self, text: str) -> CommandResult:
        state = self.state
        if state.account_step == "name":
            name = text.strip()
            if len(name) < settings.MIN_NAME_LENGTH:
                raise ValidationError(f"please provide a name ({settings.MIN_NAME_LENGTH}+ characters)")
            if await self._call(self.nodes.get_user, name) is not None:
                raise ValidationError("that name is already taken. type /login to sign in.")
            state.pending_name = name
            state.account_step = "password"
            self._show_screen(screens.password_screen(name))
            return CommandResult(state.stage, True)

        if state.account_step == "password":
            if len(text) < settings.MIN_PASSWORD_LENGTH:
                raise ValidationError(f"password must be at least {settings.MIN_PASSWORD_LENGTH} characters")
            identity = UserIdentity.account(state.pending_name, text)
            await self._mutate(self.nodes.save_user, identity)
            state.identity = identity
            state.account_step = "complete"
            log_event("ACCOUNT_CREATED", {"name": identity.name})
            self._show_screen(screens.account_confirmed(format_handle(identity.name)))
            self._set_stage(Stage.ACCOUNT_CONFIRMED)
            return CommandResult(state.stage, True)

        return self._reply("hint", "just type your name, or use /login /guest")

    async def _text_login(self, text: str) -> CommandResult:
        state = self.state
        if state.account_step == "name":
            username = text.strip()
            if len(username) < settings.MIN_NAME_LENGTH:
                raise ValidationError(f"please provide a username ({settings.MIN_NAME_LENGTH}+ characters)")
            state.pending_name = username
            state.account_step = "password"
            return self._ok(f"username: {username}", "password:")

        if state.account_step == "password":
            if len(text) < settings.MIN_PASSWORD_LENGTH:
                raise ValidationError(f"password must be at least {settings.MIN_PASSWORD_LENGTH} characters")
            user = await self._call(self.nodes.get_user, state.pending_name)
            if user is None:
                state.account_step = "name"
                return self._reply("denied", f"no account named {state.pending_name}. type your username again.")
            if not verify_password(text, user.password_hash):
                return self._reply("denied", "that password does not match. try again, or /login to restart.")
            state.identity = user
            state.account_step = "complete"
            self._write(
                f"welcome back, {user.name}",
                "you are now connected to the field",
                "available actions: /link · /tend · /explore · /offer",
            )
            self._set_stage(Stage.REFLECT)
            return CommandResult(state.stage, True)

        return self._reply("hint", "just type your username")

    async def _text_reflect(self, text: str) -> CommandResult:
        state = self.state
        if text.lower().startswith("role:") and state.identity is not None and not state.identity.role:
            role = text.split(":", 1)[1].strip().lower()
            if role not in VALID_ROLES:
                raise ValidationError("choose: " + " · ".join(VALID_ROLES))
            identity = state.identity.with_role(role)
            await self._mutate(self.nodes.save_user, identity)
            state.identity = identity
            return self._ok(f"role recorded: {role}", "you may now tend your node with context.")

        state.draft = f"{state.draft}\n{text}" if state.draft else text
        return self._ok(f"reflection saved ({len(state.draft)} chars). type /link to connect it.")

    async def _text_tend(self, text: str) -> CommandResult:
        state = self.state
        kind, _, value = text.partition(":")
        kind, value = kind.strip().lower(), value.strip()
        if kind not in ("source", "note") or not value:
            raise ValidationError("format: source: [url] or note: [your note] or /done")

        if kind == "note":
            state.evidence.append(("note", value))
            return self._ok(f"care-note added: {value}", "add another source or note, or type /done to finish")

        messages = [f"source added: {value}"]
        if state.tend_target:
            node = await self._call(self.nodes.get_node, state.tend_target)
            artifacts = node.artifacts + [NodeArtifact(type="url", url=value, metadata=ArtifactMetadata(title=value))]
            updated = await self._mutate(
                self.nodes.update_node,
                node.id,
                {"artifacts": artifacts, "last_tended": utc_now()},
            )
            state.current_node = updated
            messages.append(f"{updated.id} is {updated.status}.")
        state.evidence.append(("source", value))
        messages.append("add another source or note, or type /done to finish")
        return self._ok(*messages)

    def _text_node_form(self, text: str) -> CommandResult:
        editor = self.state.editor
        field_name, sep, value = text.partition(":")
        field_name = field_name.strip().lower()
        if editor is None or not sep or field_name not in ("statement", "description", "source"):
            return self._reply("hint", "use statement: / description: / source: to fill the form, or /cancel to go back.")

        if field_name == "statement":
            editor.set_statement(value)
        elif field_name == "description":
            editor.set_description(value)
        elif not editor.add_source(value):
            raise ValidationError("that source is empty or already listed.")
        self._write(*self._form_lines())
        return CommandResult(self.state.stage, True)

    async def _text_pick_node(self, number: int) -> CommandResult:
        listing = self.state.browse_nodes
        if not 1 <= number <= len(listing):
            raise ValidationError(f"no node #{number} in this list.")
        node = await self._call(self.nodes.get_node, listing[number - 1].id)
        self.state.current_node = node
        self._show_screen(screens.node_detail(node))
        self._set_stage(Stage.NODE_DETAIL)
        return CommandResult(self.state.stage, True)

    # --- commands ---

    async def _cmd_home(self, parsed: ParsedInput) -> CommandResult:
        state = self.state
        state.editor = None
        state.draft = ""
        state.evidence = []
        state.unlocked_seed = False
        state.show_node_form = False
        state.current_node = None
        state.tend_target = None
        state.browse_nodes = []
        state.account_step = "name"
        state.pending_name = ""
        self._show_screen(screens.boot_lines())
        return CommandResult(state.stage, True)

    async def _cmd_help(self, parsed: ParsedInput) -> CommandResult:
        if not parsed.args:
            self._write(*screens.help_index())
            return CommandResult(self.state.stage, True)
        index = screens.find_help_section(parsed.args)
        if index is None:
            raise ValidationError(f"no help section '{parsed.args}'. type /help to list them.")
        self.store.set(settings.LAST_HELP_KEY, str(index + 1))
        self._write(*screens.help_section(index))
        return CommandResult(self.state.stage, True)

    def _form_lines(self) -> List[str]:
        draft = self.state.editor.draft
        return screens.node_form(draft.statement, draft.description, draft.sources, draft.status)

    async def _cmd_open_node_form(self, parsed: ParsedInput) -> CommandResult:
        editor = NodeEditor(self.store, self.state.identity)
        self.state.editor = editor
        self.state.show_node_form = True
        self._show_screen(self._form_lines())
        return CommandResult(self.state.stage, True)

    async def _cmd_browse(self, parsed: ParsedInput) -> CommandResult:
        nodes = await self._call(self.nodes.get_all_nodes)
        self.state.browse_nodes = nodes
        self._show_screen(screens.browse_screen(nodes, settings.BROWSE_PAGE_SIZE))
        return CommandResult(self.state.stage, True)

    async def _cmd_orient(self, parsed: ParsedInput) -> CommandResult:
        self._show_screen(screens.orient_screen())
        return CommandResult(self.state.stage, True)

    async def _cmd_join(self, parsed: ParsedInput) -> CommandResult:
        self.state.account_step = "name"
        self._show_screen(screens.login_screen())
        return CommandResult(self.state.stage, True)

    async def _cmd_identify_intro(self, parsed: ParsedInput) -> CommandResult:
        self.state.account_step = "name"
        self.state.pending_name = ""
        self._show_screen(screens.identity_intro())
        return CommandResult(self.state.stage, True)

    async def _cmd_policy(self, parsed: ParsedInput) -> CommandResult:
        return self._ok(
            "opening the shared policy archive (placeholder).",
            "type /agree when you are ready to continue.",
        )

    async def _cmd_exit_covenant(self, parsed: ParsedInput) -> CommandResult:
        return self._ok("connection closed. type /orient to reconnect.")

    async def _cmd_login_prompt(self, parsed: ParsedInput) -> CommandResult:
        self.state.account_step = "name"
        self.state.pending_name = ""
        return self._ok("username: [__________]", "type your username below.")

    async def _cmd_guest(self, parsed: ParsedInput) -> CommandResult:
        self.state.identity = UserIdentity.guest()
        self._show_screen(
            ["welcome, guest! you can browse and explore.", "to write and create, you'll need an account.", ""]
            + screens.exploration_intro("guest")
        )
        return CommandResult(self.state.stage, True)

    async def _cmd_exploration(self, parsed: ParsedInput) -> CommandResult:
        self._show_screen(screens.exploration_intro(self._handle))
        return CommandResult(self.state.stage, True)

    async def _cmd_map(self, parsed: ParsedInput) -> CommandResult:
        stats = await self._call(self.nodes.get_stats)
        return self._ok(
            f"field map: {stats['total_nodes']} nodes in {stats['clusters']} clusters",
            f"average connections per node: {stats['average_connections']:.1f}",
            "type /browse to walk through them.",
        )

    async def _cmd_lineage_info(self, parsed: ParsedInput) -> CommandResult:
        return self._ok(
            "field exploration coming soon. for now, create nodes to build the field.",
            "type /node to create your first node, or /browse to see existing ones.",
        )

    async def _cmd_link_reflection(self, parsed: ParsedInput) -> CommandResult:
        if len(self.state.draft.strip()) < settings.MIN_DRAFT_LENGTH:
            raise ValidationError("add a bit more before linking (~10+ chars).")
        self.state.unlocked_seed = True
        return self._ok(
            "link recorded. thank you for tending the field.",
            "/tend is now available for maintenance.",
            "you can /offer to publish or keep exploring.",
        )

    async def _cmd_tend(self, parsed: ParsedInput) -> CommandResult:
        self.state.tend_target = None
        return self._ok(
            "tending mode: add sources, citations, or care-notes",
            "format: source: [url] or note: [your note]",
        )

    async def _cmd_explore_hint(self, parsed: ParsedInput) -> CommandResult:
        return self._ok(
            "exploration mode: browse existing nodes or create new ones.",
            "type /browse to see nodes, or /node to create a new one.",
        )

    async def _cmd_offer(self, parsed: ParsedInput) -> CommandResult:
        sources = sum(1 for kind, _ in self.state.evidence if kind == "source")
        return self._ok(
            "ready to offer your reflection to the field.",
            f"draft: {len(self.state.draft)} chars · sources: {sources} · notes: {len(self.state.evidence) - sources}",
            "type /publish to publish it, or /back to keep writing.",
        )

    async def _cmd_return_to_reflect(self, parsed: ParsedInput) -> CommandResult:
        return self._ok("returning to reflection.")

    async def _cmd_done_tending(self, parsed: ParsedInput) -> CommandResult:
        self.state.tend_target = None
        return self._ok("tending complete. node maintained.", available_hint(Stage.LINK))

    async def _cmd_publish(self, parsed: ParsedInput) -> CommandResult:
        state = self.state
        draft = state.draft.strip()
        if not draft:
            raise ValidationError("write a reflection before publishing.")
        node = self._reflection_node(draft)
        created = await self._mutate(self.nodes.create_node, node, "RF")
        state.draft = ""
        state.evidence = []
        state.unlocked_seed = False
        return self._ok(f"node published: {created.id} \"{created.title}\"", self._status_message(created))

    def _reflection_node(self, draft: str) -> Node:
        sources = [value for kind, value in self.state.evidence if kind == "source"]
        notes = [value for kind, value in self.state.evidence if kind == "note"]
        thought = draft
        if notes:
            thought += "\n\ncare-notes:\n" + "\n".join(f"- {n}" for n in notes)
        role = self.state.identity.role if self.state.identity else ""
        return Node(
            title=draft.splitlines()[0][:80],
            thought=thought,
            origin=NodeOrigin(type="other", description=", ".join(sources) or "No source provided"),
            artifacts=[NodeArtifact(type="url", url=s, metadata=ArtifactMetadata(title=s)) for s in sources],
            author=self._handle,
            tags=[role] if role else [],
            system_context=NodeSystemContext(
                layer="reflection",
                description="A reflection offered to the Field",
                instructions="Reflections can be linked to the raw nodes they grew from",
            ),
        )

    @staticmethod
    def _status_message(node: Node) -> str:
        if node.status == "grounded":
            return "your node is grounded with sources and ready for review."
        return "your node is in draft state. add sources to ground it."

    async def _cmd_cancel_node(self, parsed: ParsedInput) -> CommandResult:
        if self.state.editor is not None:
            self.state.editor.cancel()
        self.state.editor = None
        self.state.show_node_form = False
        return self._ok("node creation cancelled.")

    async def _cmd_seed_node(self, parsed: ParsedInput) -> CommandResult:
        editor = self.state.editor or NodeEditor(self.store, self.state.identity)
        self.state.editor = editor
        node = editor.seed()
        created = await self._mutate(self.nodes.create_node, node, "RN")
        self.state.editor = None
        self.state.show_node_form = False
        return self._ok(
            f"node created: {created.id} \"{created.title}\"",
            self._status_message(created),
            "type /browse to see all nodes, or /node to create another.",
        )

    async def _cmd_unsource(self, parsed: ParsedInput) -> CommandResult:
        editor = self.state.editor
        if editor is None or not editor.draft.sources:
            raise ValidationError("there are no sources to remove.")
        if parsed.args and not parsed.args.isdecimal():
            raise ValidationError("format: /unsource [number]")
        index = int(parsed.args) - 1 if parsed.args else len(editor.draft.sources) - 1
        removed = editor.remove_source(index)
        self._write(f"source removed: {removed}", *self._form_lines())
        return CommandResult(self.state.stage, True)

    async def _cmd_back_to_lineage(self, parsed: ParsedInput) -> CommandResult:
        return self._ok("returning to exploration.")

    async def _cmd_search(self, parsed: ParsedInput) -> CommandResult:
        if not parsed.args:
            raise ValidationError("format: /search [words]")
        results = await self._call(self.nodes.search, parsed.args)
        self.state.browse_nodes = results
        heading = f"{len(results)} nodes match \"{parsed.args}\":"
        self._show_screen(screens.browse_screen(results, settings.BROWSE_PAGE_SIZE, heading))
        return CommandResult(self.state.stage, True)

    async def _cmd_filter(self, parsed: ParsedInput) -> CommandResult:
        if not parsed.args:
            raise ValidationError("format: /filter status:grounded author:name tag:care sort:title order:asc")
        options = {}
        for token in parsed.args.split():
            key, sep, value = token.partition(":")
            target = _FILTER_KEYS.get(key.lower())
            if not sep or not value or target is None:
                raise ValidationError(f"unknown filter '{token}'. use " + ", ".join(f"{k}:" for k in _FILTER_KEYS))
            options[target] = value.split(",") if target == "tags" else value
        try:
            search = SearchOptions(**options)
        except PydanticValidationError as e:
            raise ValidationError(f"invalid filter value: {e.errors()[0]['msg']}") from e
        results = await self._call(self.nodes.search_advanced, search)
        self.state.browse_nodes = results
        heading = f"{len(results)} nodes for {parsed.args}:"
        self._show_screen(screens.browse_screen(results, settings.BROWSE_PAGE_SIZE, heading))
        return CommandResult(self.state.stage, True)

    async def _cmd_link_node(self, parsed: ParsedInput) -> CommandResult:
        current = self.state.current_node
        if current is None:
            raise ValidationError("open a node first.")
        other = parsed.args.strip().upper()
        if not other:
            raise ValidationError("format: /link [node id], e.g. /link FN-RN.002")
        source, target = await self._mutate(self.nodes.connect_nodes, current.id, other)
        self.state.current_node = source
        return self._ok(
            f"linked {source.id} ↔ {target.id}.",
            f"{source.id} now has {source.connection_count} connections.",
        )

    async def _cmd_tend_node(self, parsed: ParsedInput) -> CommandResult:
        current = self.state.current_node
        if current is None:
            raise ValidationError("open a node first.")
        self.state.tend_target = current.id
        return self._ok(
            f"tending {current.id}: add sources, citations, or care-notes",
            "format: source: [url] or note: [your note]",
        )

    async def _cmd_back_to_browse(self, parsed: ParsedInput) -> CommandResult:
        self.state.current_node = None
        return self._ok("returning to node browser.")

    async def _cmd_edit_node(self, parsed: ParsedInput) -> CommandResult:
        return self._ok("node editing coming soon.")


def visible_routes() -> List[Tuple[Stage, Route]]:
    """Every (stage, route) pair a user can discover through suggestions."""
    return [(stage, r) for stage, routes in STAGE_ROUTES.items() for r in routes if not r.hidden]
