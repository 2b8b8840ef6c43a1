from __future__ import annotations

import hashlib

from .models import Conversation

# Only the trailing bubbles contribute; edits to older bubbles go undetected.
TAIL_BUBBLES = 5


def _feed(digest: hashlib._Hash, value: str) -> None:
    data = value.encode("utf-8")
    digest.update(len(data).to_bytes(8, "big"))
    digest.update(data)


def fingerprint(conversation: Conversation) -> str:
    """Content fingerprint used to skip unchanged conversations during sync.

    Covers the composer id, title, bubble count and the id and text of the last
    ``TAIL_BUBBLES`` bubbles in sorted order. Callers are expected to pass a
    conversation whose bubbles are already sorted.
    """

    digest = hashlib.sha256()
    _feed(digest, conversation.composer_id)
    _feed(digest, conversation.title)
    _feed(digest, str(len(conversation.bubbles)))
    for bubble in reversed(conversation.bubbles[-TAIL_BUBBLES:]):
        _feed(digest, bubble.bubble_id)
        _feed(digest, bubble.text)
    return digest.hexdigest()
