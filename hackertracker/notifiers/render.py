"""
Build Discord embeds for changes.

Renderers return None for changes that are not worth a message (for
example a participant whose rank moved but whose reputation did not).
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from ..diff import sort_changes
from ..models import Added, Change, Participant, QueueItem, Removed, Report, Updated
from .breakdown import calculate_rep_breakdown

Embed = Dict[str, Any]


class EmbedColors:
    NEGATIVE = 16711680
    POSITIVE = 5222492
    MAJOR = 16567356
    INFORMAL = 8882052
    TRANSPARENT = 2829617


MAJOR_CHANGE = 50
FIELD_VALUE_LIMIT = 1024
PROFILE_URL = "https://hackerone.com/{}"


def link(handle: str) -> str:
    return f"[**``{handle}``**]({PROFILE_URL.format(handle)})"


def iso_timestamp(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat()


def format_amount(amount: float) -> str:
    return str(int(amount)) if float(amount).is_integer() else f"{amount:.2f}"


def _truncate(text: str, limit: int = FIELD_VALUE_LIMIT) -> str:
    return text if len(text) <= limit else text[: limit - 1] + "…"


def render_participant_change(change: Change, item: QueueItem) -> Optional[Embed]:
    if isinstance(change, Added):
        new: Participant = change.after
        handle = new.scope or item.scope or ""
        rank = f"#{new.rank}" if new.rank >= 0 else ">100"
        color = EmbedColors.MAJOR if new.rank >= MAJOR_CHANGE else EmbedColors.POSITIVE
        return {
            "description": f"{link(new.user_name)} was added to {link(handle)} "
                           f"with **{new.reputation} reputation** (rank: {rank})",
            "color": color,
        }

    if isinstance(change, Removed):
        old: Participant = change.before
        handle = old.scope or item.scope or ""
        return {
            "description": f"{link(old.user_name)} was removed from {link(handle)}",
            "color": EmbedColors.NEGATIVE,
        }

    old, new = change.before, change.after
    delta = new.reputation - old.reputation
    if delta == 0:
        return None

    handle = new.scope or item.scope or ""
    if delta > 0:
        text = f"{link(new.user_name)} gained **+{delta} reputation** and now has **{new.reputation} reputation**"
        color = EmbedColors.MAJOR if delta >= MAJOR_CHANGE else EmbedColors.POSITIVE
    else:
        text = f"{link(new.user_name)} lost **{delta} reputation** and now has **{new.reputation} reputation**"
        color = EmbedColors.NEGATIVE
    if item.include_scope:
        text += f" in {link(handle)}"

    footer = []
    if old.rank >= 0 and new.rank >= 0 and new.rank != old.rank:
        moved = old.rank - new.rank
        footer.append(f"#{old.rank} -> #{new.rank} ({'+' if moved > 0 else '-'}{abs(moved)})")
    breakdown = str(calculate_rep_breakdown(delta))
    if breakdown:
        footer.append(breakdown)

    embed: Embed = {"description": text, "color": color}
    if footer:
        embed["footer"] = {"text": " • ".join(footer)}
    return embed


def render_report_change(change: Change, item: QueueItem) -> Optional[Embed]:
    if isinstance(change, Removed):
        return None
    new: Report = change.after
    if not new.disclosed:
        return None
    if isinstance(change, Updated) and change.before.disclosed:
        return None

    reporter = link(new.user_name)
    if new.collaboration:
        reporter += " (+ unknown collaborator)"
    bounty = "hidden" if new.bounty_hidden else f"{format_amount(new.awarded_amount)} {new.currency}"

    fields = [{"name": "Reporter", "value": reporter}]
    if new.summary:
        fields.append({"name": "Summary", "value": _truncate(new.summary)})
    fields.append({"name": "Severity", "value": new.severity or "unknown", "inline": True})
    fields.append({"name": "Bounty Award", "value": bounty, "inline": True})

    return {
        "title": _truncate(new.title or "(unknown title)", 256),
        "url": new.url or f"https://hackerone.com/reports/{new.id}",
        "color": EmbedColors.TRANSPARENT,
        "fields": fields,
    }


def _join_users(handles: List[str]) -> str:
    if len(handles) == 1:
        return handles[0]
    if len(handles) <= 5:
        return f"{', '.join(handles[:-1])} and {handles[-1]}"
    others = len(handles) - 3
    return f"{', '.join(handles[:3])} and {others} other user{'s' if others > 1 else ''}"


def render_thanks_changes(changes: List[Change], item: QueueItem) -> Optional[Embed]:
    """One embed per program for reports newly closed as informative."""
    if not changes:
        return None
    if len(changes) == 1:
        closed = changes[0].after.invalid_report_count - changes[0].before.invalid_report_count
        count = "a report" if closed == 1 else f"{closed} reports"
    else:
        count = "several reports"

    handle = item.scope or changes[0].after.scope or ""
    users = _join_users([link(c.after.user_name) for c in changes])
    return {
        "description": f"{link(handle)} closed {count} from {users} as Informative",
        "color": EmbedColors.INFORMAL,
    }


RENDERERS: Dict[str, Callable[[Change, QueueItem], Optional[Embed]]] = {
    "reputation": render_participant_change,
    "reports": render_report_change,
}

# Resources whose whole queue item becomes a single embed.
GROUP_RENDERERS: Dict[str, Callable[[List[Change], QueueItem], Optional[Embed]]] = {
    "thanks": render_thanks_changes,
}


def render_change(change: Change, item: QueueItem, replayed: bool = False) -> Optional[Embed]:
    """Render one change of ``item``; replayed items carry their original time."""
    embed = RENDERERS[item.resource](change, item)
    if embed is not None and replayed:
        embed["timestamp"] = iso_timestamp(item.created_at)
    return embed


def render_item(item: QueueItem, replayed: bool = False) -> List[Embed]:
    """Render every change of ``item`` in presentation order."""
    changes = sort_changes(item.changes)
    if item.resource in GROUP_RENDERERS:
        embed = GROUP_RENDERERS[item.resource](changes, item)
        if embed is None:
            return []
        if replayed:
            embed["timestamp"] = iso_timestamp(item.created_at)
        return [embed]

    embeds = []
    for change in changes:
        embed = render_change(change, item, replayed=replayed)
        if embed is not None:
            embeds.append(embed)
    return embeds
