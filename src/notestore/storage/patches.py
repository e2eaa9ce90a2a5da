"""Patch codec: building, applying and folding note patches.

Patches use the diff-match-patch text format. A note's content is the left
fold of its patch log over the empty string; the empty patch text is a
valid patch that changes nothing.
"""
import logging
from typing import Iterable

from diff_match_patch import diff_match_patch

from notestore.exceptions import ErrorCode, StoreCorruptionError, ValidationError

logger = logging.getLogger(__name__)

# Content every patch log starts from
INITIAL_CONTENT = ""


class PatchApplyError(ValueError):
    """A patch could not be parsed or did not apply cleanly."""


def _new_dmp() -> diff_match_patch:
    dmp = diff_match_patch()
    # Exact application only: a hunk that does not match is a failure,
    # never a fuzzy guess.
    dmp.Match_Threshold = 0.0
    dmp.Patch_DeleteThreshold = 0.0
    return dmp


def make_patch(old: str, new: str) -> str:
    """Build the patch text that turns ``old`` into ``new``."""
    dmp = _new_dmp()
    return dmp.patch_toText(dmp.patch_make(old, new))


def apply_patch(content: str, patch: str) -> str:
    """Apply one patch to ``content`` and return the result.

    Raises:
        PatchApplyError: If the patch text is malformed or a hunk fails.
    """
    if not patch:
        return content
    dmp = _new_dmp()
    try:
        patches = dmp.patch_fromText(patch)
    except ValueError as e:
        raise PatchApplyError(f"Malformed patch: {e}") from e
    result, applied = dmp.patch_apply(patches, content)
    if not all(applied):
        failed = applied.count(False)
        raise PatchApplyError(f"{failed} of {len(applied)} hunks did not apply")
    return result


def fold_patches(patches: Iterable[str], note_id: str = "") -> str:
    """Rebuild content by applying ``patches`` in order to the empty string.

    Used on stored patch logs, so a failure means the log is corrupt.

    Raises:
        StoreCorruptionError: If a stored patch no longer applies.
    """
    content = INITIAL_CONTENT
    for seq, patch in enumerate(patches, start=1):
        try:
            content = apply_patch(content, patch)
        except PatchApplyError as e:
            logger.error(f"Patch {seq} of note {note_id} failed to apply: {e}")
            raise StoreCorruptionError(
                f"Stored patch {seq} of note '{note_id}' does not apply",
                key=note_id or None,
                code=ErrorCode.PATCH_LOG_CORRUPTED,
            ) from e
    return content


def apply_caller_patch(content: str, patch: str) -> str:
    """Apply a patch supplied by a caller.

    Raises:
        ValidationError: If the patch is malformed or does not apply.
    """
    try:
        return apply_patch(content, patch)
    except PatchApplyError as e:
        raise ValidationError(
            f"Patch does not apply: {e}",
            field="patch",
            code=ErrorCode.PATCH_INVALID,
        ) from e


def byte_size(content: str) -> int:
    """Size of ``content`` as stored, in UTF-8 bytes."""
    return len(content.encode("utf-8"))
