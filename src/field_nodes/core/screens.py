"""
Screen texts of the terminal. Every function returns plain lines; the
renderer decides colour.
"""

from typing import List, Optional, Sequence, Tuple

from ..models.node import Node
from ..utils.serializers import node_summary

RULE = "──────────────────────────────────────────────"
FRAME_WIDTH = 52


def new_screen(title: str, content: str, prompt: str) -> List[str]:
    """Frames content under a titled box and ends with the prompt line."""
    top = f"┌─ {title} " + "─" * max(1, FRAME_WIDTH - len(title) - 4) + "┐"
    bottom = "└" + "─" * (FRAME_WIDTH - 1) + "┘"
    return [top, ""] + content.split("\n") + ["", bottom, prompt]


def boot_lines() -> List[str]:
    return [
        "guest@fieldnodes:~FIELD",
        "",
        "welcome to a space where thoughts connect",
        "where ideas grow through relation, not competition",
        "this is not about being seen",
        "it's about listening, tending, belonging",
        "",
        "> type /node to create your first node",
        "> type /browse to explore existing nodes",
        "> type /orient to learn more about the system",
    ]


def orient_screen() -> List[str]:
    content = f"""welcome to FIELD NODES
{RULE}
a shared environment for collaborative thinking
each idea lives as a node, connected, editable,
and part of a collective field of knowledge
{RULE}

ABOUT
Field Nodes is not social media or a feed.
It's a collaborative workspace where participants
create, connect, and care for ideas.
You can explore existing nodes, add your own,
or reflect on others.

BASIC COMMANDS
   /orient     see this guide again
   /explore    browse existing fields and nodes
   /help       list all available commands

BEST PRACTICES
   • move slowly, context matters
   • listen before adding
   • name things clearly so others can find them
   • credit existing connections when you extend them"""
    return ["orientation initiated…", ""] + new_screen(
        "ORIENTATION", content, "press Enter to continue or /explore to skip"
    )


def covenant_screen() -> List[str]:
    content = """Before joining, review our shared principles:

• Knowledge here is collective, additive, and attributed.
• We design for care, not competition.
• Contributions can be linked, forked, and preserved with credit.
• We honor pacing, rest, and context.
• We reject harassment, extraction, and scarcity.

To participate, you must agree to uphold these values."""
    return new_screen("FIELD NODES COVENANT", content, "type /agree to continue or /policy to review terms")


def identity_intro() -> List[str]:
    content = """to write and create in the field, you need an account:

choose a name: [type below]
choose a password: [type below]

Already have an account? type /login
Want to browse first? type /guest"""
    return new_screen("ACCOUNT CREATION", content, "type your name below:")


def password_screen(name: str) -> List[str]:
    content = f"""account creation in progress...

name: {name} ✓
password: [type below]

choose a secure password (minimum 4 characters)"""
    return new_screen("PASSWORD SETUP", content, "type your password:")


def account_confirmed(handle: str) -> List[str]:
    content = f"""account created successfully!

welcome, {handle}@fieldnodes
your space has been initialized

STATE: exploring
MODE: collective
DATA: local-first sync ON

ready when you are."""
    return new_screen("ACCOUNT CONFIRMED", content, "press Enter to begin exploring")


def login_screen() -> List[str]:
    content = """do you have an account?

just type your username below:"""
    return new_screen("LOGIN", content, "type your username:")


def exploration_intro(handle: str) -> List[str]:
    content = f"""welcome to the field of collaborative
thinking and knowledge building

YOU ARE HERE
   {handle}@fieldnodes
   STATE: exploring | MODE: collective

TIP
   create nodes to start building the field
   every node needs evidence: links, images, videos, or files"""
    return new_screen(
        "EXPLORATION MODE", content,
        "type /node to create your first node, or /lineage to explore fields",
    )


def node_form(statement: str, description: str, sources: Sequence[str], status: str) -> List[str]:
    """The raw node form as text, redrawn after every edit."""
    lines = [
        "RAW NODE",
        RULE,
        f"statement:   {statement or '[empty]'}",
        f"description: {description or '[empty]'}",
        "sources:",
    ]
    if sources:
        lines += [f"   [{i + 1}] {s}" for i, s in enumerate(sources)]
    else:
        lines.append("   none yet")
    lines += [
        f"status:      {status}",
        RULE,
        "edit with statement: / description: / source: [url]",
        "/unsource [n] removes a source, /seed saves, /cancel goes back",
    ]
    return lines


def browse_screen(nodes: List[Node], page_size: int = 10, heading: Optional[str] = None) -> List[str]:
    if not nodes:
        if heading:
            return new_screen("BROWSE NODES", f"{heading}\n\nno nodes matched.", "try /search again, or /back to return")
        content = """no nodes found yet.

create the first node to start building the field.

every node needs evidence: links, images, videos, or files."""
        return new_screen("BROWSE NODES", content, "type /node to create the first node")

    listing = [f"[{i + 1}] {node_summary(n)}" for i, n in enumerate(nodes[:page_size])]
    if len(nodes) > page_size:
        listing.append(f"... and {len(nodes) - page_size} more")
    content = "\n".join(
        [heading or f"found {len(nodes)} nodes in the field:", ""] + listing + ["", "type a node number to view details"]
    )
    return new_screen("BROWSE NODES", content, "type node number to view, /node to create, or /back to return")


def node_detail(node: Node) -> List[str]:
    lines = [
        f"{node.id}  {node.title}",
        f"status: {node.status} · by @{node.author} · {node.connection_count} connections",
    ]
    if node.thought:
        lines += ["", node.thought]
    lines += ["", f"origin: {node.origin.type} · {node.origin.description or 'none'}"]
    if node.artifacts:
        lines.append("evidence:")
        lines += [f"   • {a.url}" for a in node.artifacts]
    if node.connections:
        lines.append("connected to: " + ", ".join(node.connections))
    if node.tags:
        lines.append("tags: " + ", ".join(f"#{t}" for t in node.tags))
    return new_screen("NODE DETAIL", "\n".join(lines), "/link [node id] · /tend · /back")


HELP_SECTIONS: List[Tuple[str, str, str]] = [
    ("getting-started", "GETTING STARTED", """BASIC WORKFLOW:
1. Type /node to create your first Raw Node
2. Fill in statement, description, and sources
3. Type /browse to see all nodes
4. Type /help anytime for this guide

QUICK COMMANDS:
/node       → Create a new Raw Node
/browse     → View all existing nodes
/orient     → See the system introduction
/help       → Show this help system

WHAT IS A RAW NODE?
A Raw Node is a single, focused idea or observation.
Think of it as a "seed" that can grow into connections.

Example Raw Node:
Statement: "Algorithms as curators of taste"
Description: "This TikTok reframed aesthetic judgment..."
Sources: "tiktok.com/@field/123\""""),
    ("commands", "ALL COMMANDS", """NAVIGATION:
/orient     → System introduction and guide
/explore    → Browse existing fields and nodes
/help       → Show this help system
/back       → Return to previous screen
/home       → Start over from the beginning

NODE CREATION:
/node       → Create a new Raw Node
/browse     → View all existing nodes
/search     → Find nodes by text: /search care
/filter     → Narrow the list: /filter status:grounded

NODE MANAGEMENT:
/link       → Connect nodes together: /link FN-RN.002
/tend       → Add sources and care-notes
/edit       → Modify existing nodes (coming soon)

ACCOUNT:
/login      → Access your account
/guest      → Continue as read-only guest"""),
    ("examples", "EXAMPLES", """EXAMPLE 1: Creating a Raw Node
> /node
statement: Social media algorithms shape taste
description: Platforms curate what we see, influencing...
source: https://example.com/research-paper
> /seed

EXAMPLE 2: Browsing Nodes
> /browse
[Shows list of all nodes]
type a number to view details

EXAMPLE 3: Getting Help
> /help 2
[Shows the command reference]

EXAMPLE 4: Tending a Node
> /tend
source: https://example.com/citation
note: compare with the 2019 archive
> /done

WHAT MAKES A GOOD RAW NODE?
• One clear idea or observation
• Grounded in evidence or experience
• Specific enough to be useful
• Broad enough to connect to other ideas"""),
    ("troubleshooting", "TROUBLESHOOTING", """COMMON ISSUES:

Q: I typed /node but nothing happened
A: Make sure you're in the right stage. Try /home first.

Q: I can't see my nodes after creating them
A: Type /browse to view all nodes.

Q: I'm stuck in a form
A: Type /cancel, or /home to start over.

Q: I forgot what commands are available
A: Type any unknown command; the terminal lists what works here.

STILL STUCK?
• Type /orient to restart the introduction
• Type /help to see this guide again"""),
    ("faq", "FREQUENTLY ASKED QUESTIONS", """Q: What is a Raw Node?
A: A single, focused idea or observation. Think of it as
   a "seed" that can grow into connections with other ideas.

Q: What does grounded mean?
A: A node with at least one source. Remove every source
   and it goes back to draft.

Q: How do I find nodes I created?
A: Type /browse, then /filter author:your.handle

Q: Is this like social media?
A: No, this is for collaborative thinking and knowledge
   building. No likes, follows, or viral content."""),
]


def help_index() -> List[str]:
    content = "\n".join(
        [f"[{i + 1}] {title.lower()}" for i, (_, title, _) in enumerate(HELP_SECTIONS)]
        + ["", "type /help [number] or /help [name] to open a section"]
    )
    return new_screen("HELP", content, "/help 1 to get started")


def find_help_section(key: str) -> Optional[int]:
    """Section index for a number (1-based) or a section id/title; None if unknown."""
    key = key.strip().lower()
    if key.isdecimal():
        index = int(key) - 1
        return index if 0 <= index < len(HELP_SECTIONS) else None
    for index, (section_id, title, _) in enumerate(HELP_SECTIONS):
        if key in (section_id, title.lower()):
            return index
    return None


def help_section(index: int) -> List[str]:
    _, title, body = HELP_SECTIONS[index]
    return [RULE, title, RULE, ""] + body.split("\n") + ["", RULE]
