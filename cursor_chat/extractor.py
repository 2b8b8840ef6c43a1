from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from .errors import RecordParseError
from .kv_reader import KvReader
from .models import BubbleType, Conversation, ExtractionStats, WorkspaceInfo
from .parser import (
    composer_id_from_key,
    conversation_id_from_key,
    parse_bubble,
    parse_composer,
    workspace_from_payload,
)

logger = logging.getLogger(__name__)


@dataclass
class ExtractOptions:
    # Partial-match filter on composer ids.
    conversation_ids: Sequence[str] | None = None
    min_messages: int = 1
    include_empty: bool = False


@dataclass
class Extraction:
    conversations: list[Conversation] = field(default_factory=list)
    workspaces: dict[str, WorkspaceInfo] = field(default_factory=dict)
    stats: ExtractionStats = field(default_factory=ExtractionStats)


def matches_any_filter(composer_id: str, filters: Sequence[str]) -> bool:
    return any(composer_id.startswith(f) or f in composer_id for f in filters)


def extract_conversations(reader: KvReader, options: ExtractOptions | None = None) -> Extraction:
    """Build conversations from one origin store.

    Composer entries seed an arena keyed by composer id; bubble entries are then
    attached, synthesizing a placeholder conversation for orphans. A malformed
    entry is logged and skipped without aborting the batch.
    """

    opts = options or ExtractOptions()
    result = Extraction()
    stats = result.stats
    arena: dict[str, Conversation] = {}

    for entry in reader.fetch_composers():
        composer_id = composer_id_from_key(entry.key)
        if composer_id is None:
            continue
        if opts.conversation_ids and not matches_any_filter(composer_id, opts.conversation_ids):
            continue
        try:
            raw = parse_composer(entry.value, key=entry.key)
        except RecordParseError as exc:
            stats.skipped_entries += 1
            logger.warning("skipping composer %s: %s", composer_id, exc.message)
            continue
        arena[composer_id] = Conversation(
            composer_id=composer_id,
            created_at=raw.created_at,
            model_config=raw.model_config,
            unified_mode=raw.unified_mode,
        )

    for entry in reader.fetch_bubbles():
        composer_id = conversation_id_from_key(entry.key)
        if composer_id is None:
            continue
        if opts.conversation_ids and not matches_any_filter(composer_id, opts.conversation_ids):
            continue
        try:
            bubble = parse_bubble(entry.value, key=entry.key)
        except RecordParseError as exc:
            stats.skipped_entries += 1
            logger.warning("skipping bubble %s: %s", entry.key, exc.message)
            continue
        if not opts.include_empty and not bubble.text.strip():
            continue

        workspace = workspace_from_payload(entry.value)
        if workspace is not None:
            result.workspaces[composer_id] = workspace

        conversation = arena.get(composer_id)
        if conversation is None:
            logger.debug("synthesizing conversation for orphan bubble %s", entry.key)
            conversation = Conversation(composer_id=composer_id, created_at=bubble.created_at)
            arena[composer_id] = conversation
        conversation.bubbles.append(bubble)

        stats.total_bubbles += 1
        if bubble.bubble_type == BubbleType.USER:
            stats.user_messages += 1
        elif bubble.bubble_type == BubbleType.ASSISTANT:
            stats.assistant_messages += 1

    conversations: list[Conversation] = []
    for conversation in arena.values():
        if len(conversation.bubbles) < opts.min_messages:
            continue
        conversation.sort_bubbles()
        conversation.title = conversation.generate_title()
        conversations.append(conversation)

    # Newest first; undated conversations last.
    dated = [c for c in conversations if c.created_at is not None]
    undated = [c for c in conversations if c.created_at is None]
    dated.sort(key=lambda c: c.created_at, reverse=True)  # type: ignore[arg-type,return-value]
    result.conversations = dated + undated
    stats.conversation_count = len(result.conversations)
    logger.info(
        "extracted %d conversations with %d messages from %s",
        stats.conversation_count,
        stats.total_bubbles,
        reader.path,
    )
    return result


def extract_from_path(path: Path | str, options: ExtractOptions | None = None) -> Extraction:
    with KvReader.open(path) as reader:
        return extract_conversations(reader, options)
