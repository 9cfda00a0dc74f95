"""prompt_toolkit input configuration."""

from prompt_toolkit import PromptSession
from prompt_toolkit.auto_suggest import AutoSuggestFromHistory
from prompt_toolkit.history import FileHistory
from prompt_toolkit.key_binding import KeyBindings

from liteagent.config import DATA_DIR, HISTORY_FILE

AUTHORIZATION_CHOICES = {
    "o": "once",
    "once": "once",
    "": "once",
    "s": "session",
    "session": "session",
    "d": "deny",
    "deny": "deny",
    "n": "deny",
    "no": "deny",
}


def create_prompt_session() -> PromptSession:
    """Create a configured prompt_toolkit session."""
    DATA_DIR.mkdir(parents=True, exist_ok=True)

    bindings = KeyBindings()

    @bindings.add("escape", "enter")
    def _(event):
        """Escape+Enter inserts a newline."""
        event.current_buffer.insert_text("\n")

    return PromptSession(
        history=FileHistory(str(HISTORY_FILE)),
        auto_suggest=AutoSuggestFromHistory(),
        multiline=False,
        key_bindings=bindings,
        enable_history_search=True,
    )


def get_prompt_text(model_short_name: str) -> str:
    """Build the prompt string showing the current model."""
    return f"{model_short_name} > "


def parse_authorization(answer: str) -> str | None:
    """Map a typed answer onto once/session/deny. None means ask again."""
    return AUTHORIZATION_CHOICES.get(answer.strip().lower())
