DRAFT = "DRAFT"
DISPATCHED = "DISPATCHED"
RECEIVED = "RECEIVED"
CANCELLED = "CANCELLED"

STATUSES = (DRAFT, DISPATCHED, RECEIVED, CANCELLED)
TERMINAL_STATUSES = frozenset({RECEIVED, CANCELLED})

ACTION_DISPATCH = "dispatch"
ACTION_RECEIVE = "receive"
ACTION_CANCEL = "cancel"
ACTION_EDIT = "edit"

# states each action may start from
ALLOWED_FROM = {
    ACTION_EDIT: frozenset({DRAFT}),
    ACTION_DISPATCH: frozenset({DRAFT}),
    ACTION_RECEIVE: frozenset({DISPATCHED}),
    ACTION_CANCEL: frozenset({DRAFT, DISPATCHED}),
}


def allowed_actions(status: str | None) -> list[str]:
    return sorted(action for action, sources in ALLOWED_FROM.items() if status in sources)


def is_allowed(action: str, status: str | None) -> bool:
    return status in ALLOWED_FROM.get(action, frozenset())
