"""Helpers shared by the test modules."""

from notestore.storage.patches import make_patch


def create_text_note(service, text, title=None, tags=None, note_type="plaintext"):
    """Create a note whose content is ``text``."""
    return service.create_note(note_type, make_patch("", text), title=title, tags=tags)


def append_text(service, note_id, new_text, title=None):
    """Append the patch that turns the note's current content into ``new_text``."""
    old_text = service.reconstruct(note_id)
    return service.append_patch(note_id, make_patch(old_text, new_text), title=title)
