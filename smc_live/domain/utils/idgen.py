from ulid import ULID


def new_ulid(prefix: str | None = None) -> str:
    value = str(ULID()).lower()
    return f"{prefix}{value}" if prefix else value


def new_sermon_id() -> str:
    return new_ulid("sm_")


def new_recording_id() -> str:
    return new_ulid("rec_")
